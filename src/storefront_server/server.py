#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Storefront Checkout Server (Python/FastAPI).

Usage:
  python -m storefront_server.server --port=8182 \
      --catalog_db_path=catalog.db --transactions_db_path=transactions.db
"""

import logging
import sys
from typing import Sequence

from absl import app as absl_app
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from storefront_server import config
from storefront_server.exceptions import StorefrontError
from storefront_server.routes.checkout import router as checkout_router
from storefront_server.routes.contact import router as contact_router
from storefront_server.routes.webhooks import router as webhooks_router
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Storefront Checkout Service",
    version=config.SERVER_VERSION,
    description="Checkout, payment webhooks and contact form for a storefront",
    lifespan=config.lifespan,
)


@app.exception_handler(StorefrontError)
async def storefront_exception_handler(request: Request, exc: StorefrontError):
  """Converts storefront exceptions to `{"error": ...}` JSON responses.

  Rate limit headers recorded for a gated request are kept on its errors.
  """
  content = {"error": exc.message}
  if exc.details is not None:
    content["details"] = exc.details
  headers = dict(getattr(request.state, "rate_limit_headers", None) or {})
  headers.update(exc.headers or {})
  return JSONResponse(
      status_code=exc.status_code, content=content, headers=headers or None
  )


app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(contact_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the storefront server."""
  del argv  # Unused.

  if (
      config.FLAGS.catalog_db_path is None
      or config.FLAGS.transactions_db_path is None
      or config.FLAGS.port is None
  ):
    logger.error(
        "--catalog_db_path, --transactions_db_path and --port must all be"
        " provided."
    )
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  settings = config.get_settings()
  if not settings.stripe_webhook_secret:
    logger.warning("No webhook secret configured; all webhooks will fail")

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


def run() -> None:
  """Console script entry point."""
  absl_app.run(main)


if __name__ == "__main__":
  run()
