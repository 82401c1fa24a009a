from flask import jsonify, request # Request context (e.g., host_url) and JSON responses.
from datetime import datetime, timezone # For UTC timestamp conversions.
# Local import of urlparse and urljoin is done inside is_safe_url, as in the other request helpers.

def is_safe_url(target):
    """
    Checks if a target URL is safe for redirection.
    A URL is considered safe if it has a scheme of 'http' or 'https'
    and its network location (netloc, i.e., domain) matches the application's host.
    Used to vet client-supplied checkout and portal return URLs.

    Args:
        target (str or None): The URL to check. Can be relative or absolute.

    Returns:
        bool: True if the target URL is safe, False otherwise.
    """
    # Ensure target is not None and is a string; otherwise, it's not a valid URL to check.
    if target is None or not isinstance(target, str):
        return False

    from urllib.parse import urlparse, urljoin # Local import for URL parsing utilities.

    # Reference URL from the current request's host URL (e.g., "http://localhost:5000/").
    ref_url = urlparse(request.host_url)

    # Join the target with the host URL so relative paths resolve against this site.
    test_url = urlparse(urljoin(request.host_url, target))

    # Check if the scheme is HTTP or HTTPS and if the network location (domain) matches.
    return test_url.scheme in ('http', 'https') and \
           ref_url.netloc == test_url.netloc

def is_same_origin(target, base_url):
    """
    True when absolute URL `target` has the same scheme and host (including port) as `base_url`.
    Used to accept redirect targets on the configured SITE_URL.
    """
    if not target or not base_url or not isinstance(target, str):
        return False

    from urllib.parse import urlparse

    base = urlparse(base_url)
    test_url = urlparse(target)
    return test_url.scheme in ('http', 'https') and \
           (test_url.scheme, test_url.netloc.lower()) == (base.scheme, base.netloc.lower())

def utcnow():
    """
    Current time as a naive UTC datetime.
    All DateTime columns in this application store naive UTC values.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)

def utc_from_timestamp(timestamp):
    """
    Converts a unix timestamp (as returned by Stripe) into a naive UTC datetime.

    Args:
        timestamp (int or None): Seconds since the epoch.

    Returns:
        datetime or None: The naive UTC datetime, or None when no timestamp was given.
    """
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)

def to_timestamp(value):
    """Converts a naive UTC datetime back into a unix timestamp (int)."""
    if value is None:
        return None
    return int(value.replace(tzinfo=timezone.utc).timestamp())

def isoformat_utc(value):
    """
    Formats a naive UTC datetime as an ISO-8601 string with an explicit UTC offset.
    Returns None for None so optional fields serialize as null.
    """
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()

def form_error_response(form):
    """
    JSON 400 for a Flask-WTF form that failed validation.

    Returns:
        tuple: (response, 400) with the per-field error lists under 'fields'.
    """
    return jsonify({
        'success': False,
        'error': 'Validation failed.',
        'code': 'VALIDATION_ERROR',
        'fields': form.errors,
    }), 400
