from predictoor import create_app, socketio
from predictoor.services.rounds.ticker import start_ticker

app = create_app()

if __name__ == '__main__':
    # Local mode: one in-process ticker next to the Socket.IO server
    start_ticker(app)
    socketio.run(app, debug=True, use_reloader=False)
