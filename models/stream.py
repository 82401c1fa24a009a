import uuid
from extensions import db
from utils.helpers import utcnow

class Stream(db.Model):
    """
    A live or pre-recorded stream the user asked the clipping backend to process.

    Only the fields the usage guard needs are modelled here: who created it,
    when, and whether it is still active.
    """
    __tablename__ = 'streams'

    stream_id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=True)
    link = db.Column(db.String(255), nullable=True)
    source = db.Column(db.String(50), nullable=True) # e.g. 'twitch', 'youtube'.
    auto_upload = db.Column(db.Boolean, nullable=False, default=False)

    is_live = db.Column(db.Boolean, nullable=False, default=False)
    # Currently being processed. Counted against max_active_streams.
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    stream_start = db.Column(db.DateTime, nullable=True)
    stream_end = db.Column(db.DateTime, nullable=True)

    # Counted against max_streams when it falls inside the current billing period.
    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'stream_id': self.stream_id,
            'title': self.title,
            'link': self.link,
            'source': self.source,
            'auto_upload': self.auto_upload,
            'is_live': self.is_live,
            'active': self.active,
        }

    def __repr__(self):
        return f'<Stream {self.stream_id} user={self.user_id} active={self.active}>'
