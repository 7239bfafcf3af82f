from repairdesk import create_app

app = create_app()
