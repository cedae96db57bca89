"""Pydantic schemas for WebAuthn options, client responses and API payloads."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

AuthenticatorTransport = Literal[
    "ble", "cable", "hybrid", "internal", "nfc", "smart-card", "usb"
]


# Options ---------------------------------------------------------------
class RelyingPartyEntity(BaseModel):
    id: str
    name: str


class UserEntity(BaseModel):
    id: str = Field(min_length=1)
    name: str
    displayName: str


class PubKeyCredParam(BaseModel):
    type: Literal["public-key"] = "public-key"
    alg: int


class PublicKeyCredentialDescriptor(BaseModel):
    id: str
    type: Literal["public-key"] = "public-key"
    transports: Optional[List[AuthenticatorTransport]] = None


class AuthenticatorSelectionCriteria(BaseModel):
    authenticatorAttachment: Optional[Literal["platform", "cross-platform"]] = "platform"
    residentKey: Literal["required", "preferred", "discouraged"] = "required"
    requireResidentKey: bool = True
    userVerification: Literal["required", "preferred", "discouraged"] = "required"


class PublicKeyCredentialCreationOptions(BaseModel):
    challenge: str
    rp: RelyingPartyEntity
    user: UserEntity
    pubKeyCredParams: List[PubKeyCredParam]
    timeout: int = 60_000
    attestation: Literal["none", "indirect", "direct"] = "none"
    authenticatorSelection: AuthenticatorSelectionCriteria = Field(
        default_factory=AuthenticatorSelectionCriteria
    )
    excludeCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)
    extensions: Dict[str, Any] = Field(default_factory=lambda: {"credProps": True})


class PublicKeyCredentialRequestOptions(BaseModel):
    challenge: str
    rpId: str
    timeout: int = 60_000
    userVerification: Literal["required", "preferred", "discouraged"] = "required"
    allowCredentials: List[PublicKeyCredentialDescriptor] = Field(default_factory=list)


# Client responses (PublicKeyCredentialJSON) -----------------------------
class _ResponseModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AuthenticatorAttestationResponse(_ResponseModel):
    clientDataJSON: str = Field(min_length=1)
    attestationObject: str = Field(min_length=1)
    transports: List[AuthenticatorTransport] = Field(default_factory=list)


class AuthenticatorAssertionResponse(_ResponseModel):
    clientDataJSON: str = Field(min_length=1)
    authenticatorData: str = Field(min_length=1)
    signature: str = Field(min_length=1)
    userHandle: Optional[str] = None


class RegistrationResponse(_ResponseModel):
    id: str = Field(min_length=1)
    rawId: str = Field(min_length=1)
    type: Literal["public-key"]
    response: AuthenticatorAttestationResponse
    authenticatorAttachment: Optional[str] = None
    clientExtensionResults: Dict[str, Any] = Field(default_factory=dict)


class AuthenticationResponse(_ResponseModel):
    id: str = Field(min_length=1)
    rawId: str = Field(min_length=1)
    type: Literal["public-key"]
    response: AuthenticatorAssertionResponse
    authenticatorAttachment: Optional[str] = None
    clientExtensionResults: Dict[str, Any] = Field(default_factory=dict)


# HTTP payloads ---------------------------------------------------------
class RegisterStartRequest(BaseModel):
    username: str


class CeremonyFinishRequest(BaseModel):
    response: Dict[str, Any]


class RPResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    data: Optional[dict] = None
