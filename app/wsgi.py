from app.fooddash import create_app

app = create_app()
