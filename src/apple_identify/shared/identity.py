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
from typing import Optional, Union

from pydantic import ValidationError

from apple_identify.shared.models import AccountDetails, AppleClaims, UserIdentity, UserName

logger = logging.getLogger(__name__)


def parse_account_details(raw: Optional[Union[str, bytes]]) -> Optional[AccountDetails]:
    """
    Decodes the optional account details JSON sent next to the token.
    A bad value is logged and ignored; it never fails the authentication.
    """
    if not raw:
        return None
    try:
        return AccountDetails.model_validate_json(raw)
    except ValidationError as e:
        logger.error(f"Could not decode Account Details: {e}")
        return None


def resolve_identity(
    claims: AppleClaims,
    account_details: Optional[AccountDetails],
    provider: str,
    token: Optional[str] = None,
) -> UserIdentity:
    # Apple identity tokens never carry a name, only the client can supply it.
    details = account_details or AccountDetails()
    email = claims.email or details.email

    return UserIdentity(
        id=claims.sub,
        display_name=details.full_name or "",
        name=UserName(
            family_name=details.last_name or "",
            given_name=details.first_name or "",
        ),
        emails=[email] if email else [],
        provider=provider,
        exp=claims.exp,
        claims=claims.model_dump(exclude_none=True),
        token=token,
    )
