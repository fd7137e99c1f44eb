from app.ipverify import create_app

app = create_app()
