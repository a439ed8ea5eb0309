from coursehub import create_app

app = create_app()

if __name__ == '__main__':
    # The reloader would start a second reminder scheduler
    app.run(debug=True, use_reloader=False)
