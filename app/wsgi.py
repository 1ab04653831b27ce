from app.teamspace import create_app

app = create_app()
