import os
from pos_server import app, init_runtime
from sync_config import configure_logging


def start_runtime():
    # The reloader parent process only watches files; the child serves requests
    debug = os.getenv('FLASK_DEBUG', '0') == '1'
    if debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return None
    runtime = init_runtime()
    if os.getenv('SYNC_SCHEDULER_AUTO_START', '1') == '1':
        runtime.start_scheduler()
    return runtime


if __name__ == '__main__':
    configure_logging()
    debug = os.getenv('FLASK_DEBUG', '0') == '1'
    port = int(os.getenv('PORT', '5000'))
    host = os.getenv('HOST', '0.0.0.0')
    runtime = start_runtime()
    try:
        app.run(host=host, port=port, debug=debug)
    finally:
        if runtime:
            runtime.stop()
