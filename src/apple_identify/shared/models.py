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

from typing import Optional, Dict, Any, List, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


class KeyRecord(BaseModel):
    """One entry of Apple's published JSON Web Key Set."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key_type: str = Field(..., alias="kty", description="Key family, 'RSA' for Apple.")
    key_id: Optional[str] = Field(None, alias="kid", description="Key identifier matched against the token header.")
    usage: Optional[str] = Field(None, alias="use", description="Intended key usage, usually 'sig'.")
    algorithm: Optional[str] = Field(None, alias="alg", description="Signing algorithm, usually 'RS256'.")
    modulus: Optional[str] = Field(None, alias="n", description="RSA modulus, base64url encoded.")
    exponent: Optional[str] = Field(None, alias="e", description="RSA public exponent, base64url encoded.")


class KeySet(BaseModel):
    model_config = ConfigDict(frozen=True)

    keys: List[KeyRecord] = Field(..., description="Keys in the order Apple published them.")


def _bool_as_string(value: Union[str, bool, None]) -> Optional[str]:
    # Apple has sent these flags both as JSON booleans and as "true"/"false".
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


class AppleClaims(BaseModel):
    """
    Claims carried by a Sign in with Apple identity token.
    See https://developer.apple.com/documentation/sign_in_with_apple/sign_in_with_apple_rest_api/authenticating_users_with_sign_in_with_apple
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    iss: str = Field(..., description="Issuer, always https://appleid.apple.com.")
    sub: str = Field(..., description="Stable unique identifier of the user.")
    aud: str = Field(..., description="The client_id of the relying party.")
    exp: Optional[int] = Field(None, description="Expiration time (Unix epoch).")
    iat: Optional[int] = Field(None, description="Issued-at time (Unix epoch).")
    nbf: Optional[int] = Field(None, description="Not-before time (Unix epoch).")
    nonce: Optional[str] = Field(None, description="Present only if the authorization request supplied one.")
    email: Optional[str] = Field(None, description="The user's (possibly relay) email address.")
    email_verified: Optional[str] = Field(None, description="'true' when Apple verified the email.")
    is_private_email: Optional[str] = Field(None, description="'true' for private relay addresses.")

    @field_validator("email_verified", "is_private_email", mode="before")
    @classmethod
    def _normalize_flag(cls, value):
        return _bool_as_string(value)


class AccountDetails(BaseModel):
    """
    Profile attributes the client sends next to the token, because the
    identity token itself carries no name. Display only, never trusted.
    """

    model_config = ConfigDict(populate_by_name=True)

    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    full_name: Optional[str] = Field(None, alias="fullName")
    email: Optional[str] = Field(None, alias="email")


class UserName(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    family_name: str = Field("", alias="familyName")
    given_name: str = Field("", alias="givenName")


class UserIdentity(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique user identifier, the 'sub' claim.")
    display_name: str = Field("", alias="displayName", description="Full name supplied by the client, if any.")
    name: UserName = Field(default_factory=UserName, description="Family and given name supplied by the client.")
    emails: List[str] = Field(default_factory=list, description="Resolved email addresses, claims first.")
    provider: str = Field(..., description="The authentication provider that validated the identity (e.g., 'AppleSignInToken').")
    exp: Optional[int] = Field(None, description="Expiration timestamp (Unix epoch) copied from the token.")
    claims: Dict[str, Any] = Field(default_factory=dict, description="All verified claims from the token.")
    token: Optional[str] = Field(None, description="The raw token, if available.")

    @property
    def email(self) -> str:
        return self.emails[0] if self.emails else ""
