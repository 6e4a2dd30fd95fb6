"""Test package for dmchat unit and integration tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
# Login/logout and account creation log at INFO; keep test output readable.
logging.getLogger("dmchat").setLevel(logging.WARNING)
