"""
Contract Payload Builder

The request service expects a different issuance body depending on how a
contract sources its claims, and that is not discoverable from the contract
metadata. The mapping is therefore an explicit table from contract ID to a
payload strategy:

- attestation: claims come from attestations configured on the contract in
  the Azure portal; the body carries only the base fields.
- self_issued: a fixed claims map configured for that contract is attached.
- anything else falls back to a minimal default claims map.

The built-in table can be replaced by a JSON table (see Settings.
CONTRACT_STRATEGIES / CONTRACT_STRATEGIES_FILE):

    {
        "<contract-id>": {"mode": "attestation"},
        "<contract-id>": {"mode": "self_issued", "claims": {...}, "pin": false}
    }
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from ..config import Settings

logger = logging.getLogger(__name__)


ATTESTATION = "attestation"
SELF_ISSUED = "self_issued"
DEFAULT = "default"

DEFAULT_CLAIMS: Dict[str, Any] = {"displayName": "Default User"}


class PayloadContext:
    """Per-request values that go into the base issuance fields."""

    def __init__(
        self,
        request_id: str,
        user_id: str,
        callback_url: str,
        manifest_url: str,
        authority: Optional[str] = None,
        client_name: str = "VID Issuing Tool Admin",
        callback_api_key: Optional[str] = None,
        user_email: Optional[str] = None,
    ):
        self.request_id = request_id
        self.user_id = user_id
        self.user_email = user_email
        self.callback_url = callback_url
        self.manifest_url = manifest_url
        self.authority = authority
        self.client_name = client_name
        self.callback_api_key = callback_api_key

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        request_id: str,
        user_id: str,
        credential_type: str,
        user_email: Optional[str] = None,
    ) -> "PayloadContext":
        return cls(
            request_id=request_id,
            user_id=user_id,
            user_email=user_email,
            callback_url=settings.callback_url,
            manifest_url=settings.manifest_url(credential_type),
            authority=settings.ISSUER_AUTHORITY,
            client_name=settings.REGISTRATION_CLIENT_NAME,
            callback_api_key=settings.CALLBACK_API_KEY,
        )


def build_base_request(credential_type: str, context: PayloadContext) -> Dict[str, Any]:
    """Fields every issuance request carries regardless of contract."""
    callback: Dict[str, Any] = {
        "url": context.callback_url,
        "state": context.request_id,
    }
    if context.callback_api_key:
        callback["headers"] = {"api-key": context.callback_api_key}

    return {
        "includeQRCode": True,
        "authority": context.authority,
        "registration": {
            "clientName": context.client_name,
            "purpose": f"Credential issuance for user {context.user_id}",
        },
        "callback": callback,
        "type": credential_type,
        "manifest": context.manifest_url,
    }


# ============================================================================
# Strategies
# ============================================================================

class ContractStrategy:
    """Turns the base fields into the body for one kind of contract."""

    mode: str = DEFAULT

    def __init__(self, label: Optional[str] = None, pin_allowed: bool = True):
        self.label = label
        self.pin_allowed = pin_allowed

    def build(self, base: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(label={self.label!r}, pin_allowed={self.pin_allowed})"


class AttestationStrategy(ContractStrategy):
    mode = ATTESTATION

    def build(self, base: Dict[str, Any]) -> Dict[str, Any]:
        # The service resolves claims from the contract's attestation mapping
        return dict(base)


class ClaimsStrategy(ContractStrategy):
    mode = SELF_ISSUED

    def __init__(
        self,
        claims: Mapping[str, Any],
        label: Optional[str] = None,
        pin_allowed: bool = True,
        mode: str = SELF_ISSUED,
    ):
        super().__init__(label=label, pin_allowed=pin_allowed)
        self.claims = dict(claims)
        self.mode = mode

    def build(self, base: Dict[str, Any]) -> Dict[str, Any]:
        return {**base, "claims": dict(self.claims)}


BUILTIN_CONTRACTS: Dict[str, ContractStrategy] = {
    "cf556239-b075-168d-f093-a3b1a388ae20": AttestationStrategy(label="Verified Employee"),
    "fb6e59ab-6c5d-4ce3-376d-a20a4f3f0d2f": AttestationStrategy(label="Security Clearance Secret"),
    "3831cbe2-b4e8-793b-100a-874ebd3e50a1": ClaimsStrategy(
        {
            "given_name": "John",
            "family_name": "Doe",
            "email": "john.doe@example.com",
            "jobTitle": "Employee",
        },
        label="Self-issued employee profile",
    ),
    "d4d9372b-e1b2-ad46-b484-6a767ea888ec": ClaimsStrategy(
        {
            "displayName": "Test User",
            "givenName": "Test",
            "surname": "User",
            "jobTitle": "Employee",
        },
        label="Self-issued display profile",
    ),
}


# ============================================================================
# Registry
# ============================================================================

class ContractRegistry:
    """Closed dispatch table from contract ID to payload strategy."""

    def __init__(
        self,
        strategies: Optional[Mapping[str, ContractStrategy]] = None,
        default: Optional[ContractStrategy] = None,
    ):
        self._strategies: Dict[str, ContractStrategy] = dict(
            BUILTIN_CONTRACTS if strategies is None else strategies
        )
        self._default = default or ClaimsStrategy(DEFAULT_CLAIMS, label="Unrecognized contract", mode=DEFAULT)

    def register(self, contract_id: str, strategy: ContractStrategy) -> None:
        self._strategies[contract_id] = strategy

    def is_known(self, contract_id: str) -> bool:
        return contract_id in self._strategies

    def resolve(self, contract_id: str) -> ContractStrategy:
        return self._strategies.get(contract_id, self._default)

    def contract_ids(self) -> List[str]:
        return list(self._strategies.keys())

    def build_payload(self, credential_type: str, context: PayloadContext) -> Dict[str, Any]:
        """
        Build the request service body for a contract.

        Args:
            credential_type: Contract identifier
            context: Request ID, subject and configuration values

        Returns:
            Issuance request body without the PIN block
        """
        strategy = self.resolve(credential_type)
        if not self.is_known(credential_type):
            logger.warning(
                "Unknown contract type, using default claims",
                extra={"credential_type": credential_type}
            )
        else:
            logger.info(
                f"Configuring issuance for {strategy.label or credential_type} ({strategy.mode})",
                extra={"credential_type": credential_type}
            )

        return strategy.build(build_base_request(credential_type, context))

    @classmethod
    def from_table(cls, table: Mapping[str, Any]) -> "ContractRegistry":
        """
        Build a registry from a JSON contract table.

        Raises:
            ValueError: On an unknown mode or a malformed entry
        """
        strategies: Dict[str, ContractStrategy] = {}
        for contract_id, entry in table.items():
            if not isinstance(entry, dict):
                raise ValueError(f"Contract entry for {contract_id} must be an object")

            mode = entry.get("mode", SELF_ISSUED if "claims" in entry else ATTESTATION)
            label = entry.get("label")
            pin_allowed = bool(entry.get("pin", True))

            if mode == ATTESTATION:
                strategies[contract_id] = AttestationStrategy(label=label, pin_allowed=pin_allowed)
            elif mode == SELF_ISSUED:
                claims = entry.get("claims")
                if not isinstance(claims, dict) or not claims:
                    raise ValueError(f"Self-issued contract {contract_id} needs a non-empty claims object")
                strategies[contract_id] = ClaimsStrategy(claims, label=label, pin_allowed=pin_allowed)
            else:
                raise ValueError(f"Unknown contract mode '{mode}' for {contract_id}")

        return cls(strategies)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContractRegistry":
        table = settings.load_contract_table()
        if table is None:
            return cls()

        registry = cls.from_table(table)
        logger.info(f"Loaded {len(table)} contract strategies from configuration")
        return registry
