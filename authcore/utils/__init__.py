from authcore.utils.helpers import normalize_email, validate_email, utcnow, error_response

__all__ = ['normalize_email', 'validate_email', 'utcnow', 'error_response']
