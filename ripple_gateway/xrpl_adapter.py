"""
XRP Ledger adapter built on ``xrpl-py``.

``XRPLAdapter`` opens one ``AsyncWebsocketClient`` per session.  Every
session method is a single ledger operation whose result is shaped like the
``ripple-lib`` objects earlier clients of this API were written against
(``xrpBalance``, ``txJSON``, ``signedTransaction``, ``resultCode`` ...).

Errors are translated in one place (``_translated``):

    rippled actNotFound / txnNotFound / ...    -> NotFound
    rippled actMalformed / invalidParams / ... -> ValidationFailure
    model, range, decimal and seed errors      -> ValidationFailure
    websocket, socket and timeout errors       -> ConnectionFailure
    tem* / tef* engine results on submit       -> SubmissionRejected
    anything else rippled reports              -> LedgerError

The payload of a translated error is rippled's ``result`` dict when there
is one, otherwise ``{"name": ..., "message": ...}``.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from collections.abc import Callable
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Any

from xrpl import XRPLException
from xrpl.asyncio.clients import AsyncWebsocketClient
from xrpl.asyncio.clients.exceptions import XRPLRequestFailureException, XRPLWebsocketException
from xrpl.asyncio.transaction import autofill
from xrpl.core.binarycodec import encode
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.requests import AccountInfo, AccountLines, Fee, SubmitOnly, Tx
from xrpl.models.requests.request import Request
from xrpl.models.transactions import Memo, Payment, PaymentFlag
from xrpl.models.transactions.transaction import Transaction
from xrpl.transaction import sign as sign_transaction
from xrpl.utils import drops_to_xrp, str_to_hex, xrp_to_drops
from xrpl.wallet import Wallet

from ripple_gateway.errors import (
    ConnectionFailure,
    LedgerError,
    NotFound,
    SubmissionRejected,
    ValidationFailure,
)

logger = logging.getLogger("ripple_gateway.xrpl")

NOT_FOUND_CODES = frozenset({"actNotFound", "txnNotFound", "lgrNotFound", "entryNotFound"})

MALFORMED_CODES = frozenset({
    "actMalformed",
    "srcActMalformed",
    "invalidParams",
    "invalidTransaction",
    "badSeed",
    "badSecret",
})

# Engine result prefixes that mean the transaction can never be applied.
REJECTED_PREFIXES = ("tem", "tef")

# Delivered amount used with destination.minAmount, as ripple-lib does.
MAX_XRP_DROPS = "100000000000000000"
MAX_IOU_VALUE = "9999999999999999e80"


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════

def format_decimal(value: Decimal) -> str:
    """Plain decimal string: no exponent, no trailing zeros."""
    return format(value.normalize(), "f")


def classify(result: dict[str, Any]) -> LedgerError:
    """Turn a rippled error ``result`` into the matching ``LedgerError``."""
    code = result.get("error")
    if code in NOT_FOUND_CODES:
        return NotFound(result)
    if code in MALFORMED_CODES:
        return ValidationFailure(result)
    return LedgerError(result)


def _exc_payload(exc: BaseException) -> dict[str, str]:
    return {"name": type(exc).__name__, "message": str(exc)}


def _translated(fn: Callable) -> Callable:
    """Re-raise client library exceptions as ``LedgerError`` subclasses."""

    @functools.wraps(fn)
    async def wrapper(self: XRPLSession, *args: Any, **kwargs: Any) -> Any:
        try:
            return await fn(self, *args, **kwargs)
        except LedgerError as exc:
            logger.debug(f"{fn.__name__}: {exc.kind}: {exc}")
            raise
        except XRPLRequestFailureException as exc:
            payload = {
                "error": getattr(exc, "error", None),
                "error_message": getattr(exc, "error_message", None) or str(exc),
            }
            raise classify(payload) from exc
        except XRPLWebsocketException as exc:
            raise ConnectionFailure(_exc_payload(exc)) from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise ConnectionFailure(_exc_payload(exc)) from exc
        except (XRPLException, InvalidOperation, ValueError, TypeError, KeyError) as exc:
            raise ValidationFailure(_exc_payload(exc)) from exc

    return wrapper


def _require_object(value: Any, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationFailure(
            {"name": "ValidationError", "message": f"{name} must be an object"}
        )
    return value


def to_xrpl_amount(obj: Any, name: str = "amount") -> str | IssuedCurrencyAmount:
    """ripple-lib ``{currency, value, counterparty}`` → xrpl-py amount."""
    obj = _require_object(obj, name)
    currency = obj.get("currency")
    value = obj.get("value")
    if currency == "XRP":
        return xrp_to_drops(Decimal(str(value)))
    return IssuedCurrencyAmount(
        currency=currency,
        issuer=obj.get("counterparty"),
        value=str(value),
    )


def _invalid(message: str) -> ValidationFailure:
    return ValidationFailure({"name": "ValidationError", "message": message})


def _maximal(amount: str | IssuedCurrencyAmount) -> str | IssuedCurrencyAmount:
    if isinstance(amount, str):
        return MAX_XRP_DROPS
    return IssuedCurrencyAmount(
        currency=amount.currency, issuer=amount.issuer, value=MAX_IOU_VALUE
    )


def _memos(raw: Any) -> list[Memo]:
    """ripple-lib plain-text ``{type, format, data}`` memos → hex ``Memo``s."""
    if not isinstance(raw, list):
        raise _invalid("payment.memos must be a list")
    memos = []
    for memo in raw:
        memo = _require_object(memo, "payment.memos[]")
        fields = {
            name: str_to_hex(str(memo[key]))
            for name, key in (("memo_type", "type"), ("memo_format", "format"), ("memo_data", "data"))
            if memo.get(key) is not None
        }
        memos.append(Memo(**fields))
    return memos


def _payment_fields(address: Any, payment: Any) -> dict[str, Any]:
    payment = _require_object(payment, "payment")
    source = _require_object(payment.get("source"), "payment.source")
    destination = _require_object(payment.get("destination"), "payment.destination")

    if source.get("address") not in (None, address):
        raise _invalid("payment.source.address must match address")
    if payment.get("paths") is not None:
        raise _invalid("payment.paths is not supported")

    min_obj = destination.get("minAmount")
    deliver = to_xrpl_amount(
        destination.get("amount") if min_obj is None else min_obj,
        "payment.destination.amount",
    )
    source_obj = source.get("maxAmount") or source.get("amount")
    if source_obj is None:
        raise _invalid("payment.source.amount or payment.source.maxAmount is required")
    send_max = to_xrpl_amount(source_obj, "payment.source.amount")
    partial = bool(payment.get("allowPartialPayment"))

    fields: dict[str, Any] = {
        "account": address,
        "destination": destination.get("address"),
        "amount": deliver,
    }
    flags = 0
    if isinstance(deliver, str) and isinstance(send_max, str):
        # XRP to XRP: no SendMax, and minAmount is delivered exactly.
        if partial:
            raise _invalid("XRP to XRP payments cannot be partial payments")
    else:
        fields["send_max"] = send_max
        if partial or min_obj is not None:
            flags |= PaymentFlag.TF_PARTIAL_PAYMENT
        if min_obj is not None:
            fields["amount"] = _maximal(deliver)
            fields["deliver_min"] = deliver
    if payment.get("noDirectRipple"):
        flags |= PaymentFlag.TF_NO_RIPPLE_DIRECT
    if payment.get("limitQuality"):
        flags |= PaymentFlag.TF_LIMIT_QUALITY
    if flags:
        fields["flags"] = int(flags)

    if destination.get("tag") is not None:
        fields["destination_tag"] = int(destination["tag"])
    if source.get("tag") is not None:
        fields["source_tag"] = int(source["tag"])
    if payment.get("invoiceID") is not None:
        fields["invoice_id"] = str(payment["invoiceID"])
    if payment.get("memos") is not None:
        fields["memos"] = _memos(payment["memos"])
    return fields


def build_payment(address: Any, payment: Any) -> Payment:
    """Build a ``Payment`` from a ripple-lib style payment specification.

    Follows ripple-lib's ``preparePayment``:

    - ``source.maxAmount`` (or ``amount``) becomes ``SendMax``, except for
      XRP-to-XRP payments which never carry one;
    - ``destination.amount`` is delivered exactly;
    - ``destination.minAmount`` makes a partial payment with ``DeliverMin``
      set to it and the maximal ``Amount``, unless both sides are XRP;
    - ``allowPartialPayment``, ``noDirectRipple``, ``limitQuality``,
      ``invoiceID`` and ``memos`` map to flags and fields.  ``paths`` is
      rejected.
    """
    try:
        return Payment(**_payment_fields(address, payment))
    except (XRPLException, InvalidOperation, ValueError, TypeError) as exc:
        raise ValidationFailure(_exc_payload(exc)) from exc


# ═══════════════════════════════════════════════════════════════════
#  Session
# ═══════════════════════════════════════════════════════════════════

class XRPLSession:
    """One websocket connection to a rippled server."""

    def __init__(
        self,
        client: Any,
        *,
        fee_cushion: float = 1.2,
        max_fee_xrp: float = 2.0,
    ):
        self.client = client
        self.fee_cushion = Decimal(str(fee_cushion))
        self.max_fee_drops = Decimal(xrp_to_drops(Decimal(str(max_fee_xrp))))

    def is_open(self) -> bool:
        return bool(self.client.is_open())

    async def close(self) -> None:
        if self.client.is_open():
            await self.client.close()

    async def _request(self, request: Request) -> dict[str, Any]:
        if not self.is_open():
            raise ConnectionFailure({"name": "NotConnectedError", "message": "websocket is not open"})
        response = await self.client.request(request)
        if not response.is_successful():
            raise classify(response.result)
        return response.result

    # ── queries ──────────────────────────────────────────────────

    @_translated
    async def get_account_info(self, address: Any) -> dict[str, Any]:
        result = await self._request(AccountInfo(account=address, ledger_index="validated"))
        data = result["account_data"]
        return {
            "sequence": data["Sequence"],
            "xrpBalance": format_decimal(drops_to_xrp(data["Balance"])),
            "ownerCount": data.get("OwnerCount", 0),
            "previousAffectingTransactionID": data.get("PreviousTxnID"),
            "previousAffectingTransactionLedgerVersion": data.get("PreviousTxnLgrSeq"),
        }

    @_translated
    async def get_balances(self, address: Any) -> list[dict[str, Any]]:
        info = await self._request(AccountInfo(account=address, ledger_index="validated"))
        balances: list[dict[str, Any]] = [{
            "currency": "XRP",
            "value": format_decimal(drops_to_xrp(info["account_data"]["Balance"])),
        }]

        ledger_index: Any = "validated"
        marker = None
        while True:
            result = await self._request(
                AccountLines(account=address, ledger_index=ledger_index, marker=marker)
            )
            for line in result.get("lines", []):
                balances.append({
                    "currency": line["currency"],
                    "value": line["balance"],
                    "counterparty": line["account"],
                })
            marker = result.get("marker")
            if marker is None:
                break
            # Later pages must read the same ledger as the first one.
            ledger_index = result.get("ledger_index", ledger_index)
        return balances

    @_translated
    async def get_transaction(self, tx_hash: Any) -> dict[str, Any]:
        return await self._request(Tx(transaction=tx_hash))

    @_translated
    async def get_fee(self) -> str:
        result = await self._request(Fee())
        open_fee = Decimal(str(result["drops"]["open_ledger_fee"]))
        fee = (open_fee * self.fee_cushion).to_integral_value(rounding=ROUND_CEILING)
        fee = min(fee, self.max_fee_drops)
        return format_decimal(drops_to_xrp(str(fee)))

    # ── accounts & payments ──────────────────────────────────────

    @_translated
    async def generate_address(self) -> dict[str, Any]:
        wallet = Wallet.create()
        return {
            "address": wallet.classic_address,
            "secret": wallet.seed,
            "publicKey": wallet.public_key,
        }

    @_translated
    async def prepare_payment(self, address: Any, payment: Any) -> dict[str, Any]:
        tx = build_payment(address, payment)
        if not self.is_open():
            raise ConnectionFailure({"name": "NotConnectedError", "message": "websocket is not open"})
        filled = await autofill(tx, self.client)
        return {
            "txJSON": json.dumps(filled.to_xrpl()),
            "instructions": {
                "fee": format_decimal(drops_to_xrp(filled.fee)),
                "sequence": filled.sequence,
                "maxLedgerVersion": filled.last_ledger_sequence,
            },
        }

    @_translated
    async def sign(self, tx_json: Any, secret: Any) -> dict[str, Any]:
        if not isinstance(secret, str) or not secret:
            raise ValidationFailure({"name": "ValidationError", "message": "secret is required"})
        wallet = Wallet.from_seed(secret)
        raw = json.loads(tx_json) if isinstance(tx_json, str) else tx_json
        signed = sign_transaction(Transaction.from_xrpl(raw), wallet)
        return {
            "signedTransaction": encode(signed.to_xrpl()),
            "id": signed.get_hash(),
        }

    @_translated
    async def submit(self, signed_tx: Any) -> dict[str, Any]:
        result = await self._request(SubmitOnly(tx_blob=signed_tx))
        code = result.get("engine_result", "")
        if code.startswith(REJECTED_PREFIXES):
            raise SubmissionRejected(result)
        return {
            "resultCode": code,
            "resultMessage": result.get("engine_result_message", ""),
        }

    # ── unit conversion ──────────────────────────────────────────

    @_translated
    async def drops_to_xrp(self, val: Any) -> str:
        return format_decimal(drops_to_xrp(val if isinstance(val, str) else str(val)))

    @_translated
    async def xrp_to_drops(self, val: Any) -> str:
        return xrp_to_drops(Decimal(str(val)))


# ═══════════════════════════════════════════════════════════════════
#  Adapter
# ═══════════════════════════════════════════════════════════════════

class XRPLAdapter:
    """Opens ``XRPLSession``s against one rippled websocket endpoint."""

    def __init__(
        self,
        server: str,
        *,
        connect_timeout: float = 10.0,
        fee_cushion: float = 1.2,
        max_fee_xrp: float = 2.0,
        client_factory: Callable[[str], Any] = AsyncWebsocketClient,
    ):
        self.server = server
        self.connect_timeout = connect_timeout
        self.fee_cushion = fee_cushion
        self.max_fee_xrp = max_fee_xrp
        self._client_factory = client_factory

    async def connect(self) -> XRPLSession:
        client = self._client_factory(self.server)
        try:
            await asyncio.wait_for(client.open(), self.connect_timeout)
        except Exception as exc:
            logger.error(f"Could not connect to {self.server}: {exc!r}")
            raise ConnectionFailure(_exc_payload(exc)) from exc
        logger.info(f"Connected to ledger network at {self.server}")
        return XRPLSession(client, fee_cushion=self.fee_cushion, max_fee_xrp=self.max_fee_xrp)

    async def disconnect(self, session: XRPLSession) -> None:
        await session.close()
        logger.debug(f"Disconnected from {self.server}")
