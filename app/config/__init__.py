# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Settings, root URLs and the ASGI/WSGI applications. HTTP and WebSocket
# traffic both enter through config.asgi.application.
# =============================================================================
