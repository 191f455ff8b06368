from routecash import create_app

app = create_app()
