from __future__ import annotations

import logging
import os

from ambulink.services.organization_service import OrganizationService

BOOTSTRAP_ADMIN_EMAIL = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@ambulink.local")


def run_bootstrap() -> str:
    user = OrganizationService().bootstrap_superadmin(BOOTSTRAP_ADMIN_EMAIL)
    return user.id


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print(run_bootstrap())
