from mangum import Mangum

from earnings.api import app

app.root_path = "/api"

handler = Mangum(app)
