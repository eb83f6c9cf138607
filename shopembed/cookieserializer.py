from webob.cookies import Base64Serializer


def get_default_session_token_serializer(serializer=None):
    """Urlsafe base64 of json, the session token's wire format."""
    return Base64Serializer(serializer=serializer)
