from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user

from extensions import db
from forms import StartStreamForm
from models.stream import Stream
from services.errors import Conflict, NotFound
from services.usage_guard import record_processed_seconds
from utils.decorators import usage_limits_enforced
from utils.helpers import form_error_response, utcnow

# Blueprint for stream processing requests.
streams_bp = Blueprint('streams', __name__, url_prefix='/api/streams')

@streams_bp.route('', methods=['POST'])
@login_required
@usage_limits_enforced # 422 when the plan's limits are already used up.
def start_stream():
    """Registers a stream for processing. Counts against the caller's plan limits."""
    form = StartStreamForm()
    if not form.validate_on_submit():
        return form_error_response(form)

    stream = Stream(
        user_id=current_user.id,
        title=form.title.data,
        link=form.link.data,
        source=form.source.data,
        is_live=bool(form.is_live.data),
        auto_upload=bool(form.auto_upload.data),
        active=True,
        stream_start=utcnow(),
    )
    try:
        db.session.add(stream)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating stream for user {current_user.id}: {e}", exc_info=True)
        raise

    current_app.logger.info(f"User {current_user.id} started stream {stream.stream_id} ({stream.source}).")
    return jsonify({'success': True, 'stream': stream.to_dict()}), 201

@streams_bp.route('/<stream_id>/stop', methods=['POST'])
@login_required
def stop_stream(stream_id):
    """
    Marks the stream inactive and charges its wall-clock duration to the
    active subscription's processed-seconds counter.
    """
    stream = Stream.query.filter_by(stream_id=stream_id, user_id=current_user.id).first()
    if stream is None:
        raise NotFound('stream')
    if not stream.active:
        raise Conflict('This stream has already been stopped.', code='STREAM_NOT_ACTIVE')

    now = utcnow()
    stream.active = False
    stream.stream_end = now
    started = stream.stream_start or stream.created_at or now
    duration = max(0, int((now - started).total_seconds()))

    # record_processed_seconds commits the stream change along with the counter.
    total = record_processed_seconds(current_user.id, duration)
    if total is None:
        db.session.commit()

    current_app.logger.info(f"User {current_user.id} stopped stream {stream.stream_id} after {duration}s.")
    return jsonify({'success': True, 'stream': stream.to_dict(), 'seconds_processed': duration,
                    'total_seconds_processed': total})
