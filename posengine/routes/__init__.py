# Overview: Flask blueprints; registered by create_app.
