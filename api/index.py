from mangum import Mangum

from piggybank.api import create_app
from piggybank.config import get_settings
from piggybank.logs import setup_json_logging

setup_json_logging(get_settings().log_level)

app = create_app(root_path="/api")

handler = Mangum(app)
