from memorix import create_app, socketio

# create_app starts the payout and sweep schedulers, so `flask run` and WSGI
# servers get them too
app = create_app()

if __name__ == '__main__':
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True)
