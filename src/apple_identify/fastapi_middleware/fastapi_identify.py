#    Copyright 2025 FAO
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
#
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

import logging
from typing import List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from apple_identify.shared.validators import IdentityValidator
from apple_identify.shared.jwt_utils import IdentityException
from apple_identify.shared.models import UserIdentity

logger = logging.getLogger(__name__)

# Only what is needed to rebuild the identity; claims and token would bloat a cookie session.
SESSION_FIELDS = {"id", "display_name", "name", "emails", "exp", "provider"}


class IdentifyMiddleware(BaseHTTPMiddleware):
    """
    Middleware to validate user identity in a FastAPI application.

    Validators run in order. The first one returning an identity wins; a
    validator raising IdentityException ends the request with that status.
    """

    def __init__(self, app, validators: List[IdentityValidator]):
        super().__init__(app)
        self.validators = validators

    async def dispatch(self, request: Request, call_next):
        if "session" not in request.scope:
            logger.error("SessionMiddleware not detected.")
            raise RuntimeError("IdentifyMiddleware requires SessionMiddleware to be installed.")

        for validator in self.validators:
            validator_name = validator.__class__.__name__
            logger.debug(f"Attempting validation with {validator_name}.")
            try:
                user_identity: Optional[UserIdentity] = await validator.validate(request)
            except IdentityException as e:
                logger.warning(f"IdentityException from {validator_name}: {e.detail}")
                request.session.pop("user", None)
                # BaseHTTPMiddleware does not route exceptions to FastAPI handlers.
                return JSONResponse(status_code=e.status_code, content={"detail": e.detail})
            except Exception as e:
                logger.error(f"Error during validation with {validator_name}: {e}", exc_info=True)
                request.session.pop("user", None)
                return JSONResponse(
                    status_code=500,
                    content={"detail": "Internal server error during authentication."},
                )

            if user_identity:
                logger.info(f"Validation succeeded with {validator_name} for {user_identity.id}.")
                request.state.user = user_identity
                request.session["user"] = user_identity.model_dump(include=SESSION_FIELDS)
                return await call_next(request)
            logger.debug(f"{validator_name} did not identify the request.")

        logger.info("Unauthenticated request. Treating as public access.")
        request.state.user = None
        request.session.pop("user", None)
        return await call_next(request)
