import os

# Debe fijarse antes de que se importe app.core.config
os.environ.setdefault("ENVIRONMENT", "testing")
