from app.tenanthub import create_app

app = create_app()
