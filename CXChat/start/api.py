import CXChat.api.routes as _api


# noinspection PyPep8Naming
def api(port=8766, host=None):
    """
    Start the HTTP api for CXChat on its own (no websocket server, so no
    live pushes reach clients).

    Args:
        port (int): Port number for the api server (default: 8766).
        host (str): Interface to bind (default: Config.DEFAULT_HOST).
    """
    _api.run(api_port=port, host=host)
