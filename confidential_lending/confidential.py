"""
confidential.py - Confidential values and the enclave that operates on them

This module provides the only arithmetic the lending engine may perform on
hidden amounts:

1. ConfidentialEnclave: the trusted execution context. It owns the AES-GCM
   key, seals client amounts, and evaluates every operation on ciphertexts.
   It is the only object able to open a ciphertext.
2. ConfidentialValue: an opaque, immutable handle over an encrypted u64.
   add / sub / scale / scale_by_ratio / min / max return new handles and
   reveal nothing.
3. ConfidentialBool: a hidden predicate. reveal() is an explicit,
   declared leak of a single bit.
4. confidential_select: choose between two handles given a revealed bool
   or a hidden ConfidentialBool, returning a re-randomised ciphertext.

Disclosure rules:
    - compare_and_reveal() discloses only the ordering (LESS/EQUAL/GREATER).
    - ConfidentialBool.reveal() discloses only the bit.
    - Handles refuse truth testing, so plaintext control flow cannot branch
      on a ciphertext by accident.
    - repr() shows a ciphertext fingerprint, never the amount.
    - Arithmetic failures (Underflow, DivisionByZero, ArithmeticOverflow)
      carry no magnitude.

Every result is re-encrypted under a fresh nonce, so equal plaintexts never
produce equal ciphertexts and a selected value cannot be matched against the
operand it came from.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
import hashlib
import os
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .fixed_point import (
    U64_MAX,
    checked_add, checked_sub, checked_mul, mul_div,
)
from .errors import ArithmeticOverflow, Underflow


# AEAD associated data, binds a ciphertext to the kind of value it seals.
_AAD_AMOUNT = b"confidential-lending/amount/v1"
_AAD_BOOL = b"confidential-lending/bool/v1"

NONCE_SIZE = 12
AMOUNT_WIDTH = 16  # bytes, big-endian


class Ordering(Enum):
    """Revealed outcome of a confidential comparison."""
    LESS = "less"
    EQUAL = "equal"
    GREATER = "greater"


class ForeignCiphertext(ValueError):
    """Raised when a handle sealed by another enclave is used as an operand."""
    pass


# ============================================================================
# ENCLAVE
# ============================================================================

class ConfidentialEnclave:
    """
    Trusted execution context for confidential arithmetic.

    Stands in for the multi-party execution cluster: callers hand it
    ciphertexts and receive ciphertexts back. Plaintexts exist only inside
    its methods.

    Attributes:
        label: Identifier of the enclave (used in fingerprints and logs)
        reveal_count: Number of declared reveals performed so far

    Example:
        enclave = ConfidentialEnclave()
        a = enclave.encrypt(100)
        b = enclave.encrypt(40)
        a.sub(b).compare_and_reveal(enclave.encrypt(60))  # Ordering.EQUAL
    """

    def __init__(self, key: Optional[bytes] = None, label: str = "mxe"):
        self.label = label
        self._aead = AESGCM(key if key is not None else AESGCM.generate_key(bit_length=256))
        self.reveal_count = 0

    def __repr__(self) -> str:
        return f"ConfidentialEnclave({self.label!r}, reveals={self.reveal_count})"

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def encrypt(self, amount: int) -> 'ConfidentialValue':
        """
        Seal a plaintext u64 amount supplied by its owner.

        Raises:
            TypeError: if amount is not an int
            Underflow: if amount is negative
            ArithmeticOverflow: if amount exceeds u64
        """
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise TypeError(f"amount must be int, got {type(amount).__name__}")
        return self._seal(amount)

    def zero(self) -> 'ConfidentialValue':
        """Return a fresh encryption of zero."""
        return self._seal(0)

    def decrypt(self, value: 'ConfidentialValue') -> int:
        """
        Open a value for its owner.

        Only account-holder views call this (see ConfidentialLedger.reveal_balance).
        Protocol logic never does.
        """
        return self._open(value)

    def _seal(self, amount: int) -> 'ConfidentialValue':
        if amount < 0:
            raise Underflow("amount would be negative")
        if amount > U64_MAX:
            raise ArithmeticOverflow("amount exceeds u64")
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, amount.to_bytes(AMOUNT_WIDTH, "big"), _AAD_AMOUNT)
        return ConfidentialValue(ciphertext=nonce + sealed, enclave=self)

    def _open(self, value: 'ConfidentialValue') -> int:
        if not isinstance(value, ConfidentialValue):
            raise TypeError(f"expected ConfidentialValue, got {type(value).__name__}")
        if value.enclave is not self:
            raise ForeignCiphertext("value was sealed by a different enclave")
        nonce, sealed = value.ciphertext[:NONCE_SIZE], value.ciphertext[NONCE_SIZE:]
        try:
            plain = self._aead.decrypt(nonce, sealed, _AAD_AMOUNT)
        except InvalidTag:
            raise ForeignCiphertext("ciphertext failed authentication") from None
        return int.from_bytes(plain, "big")

    def _seal_bool(self, bit: bool) -> 'ConfidentialBool':
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, b"\x01" if bit else b"\x00", _AAD_BOOL)
        return ConfidentialBool(ciphertext=nonce + sealed, enclave=self)

    def _open_bool(self, value: 'ConfidentialBool') -> bool:
        if value.enclave is not self:
            raise ForeignCiphertext("predicate was sealed by a different enclave")
        nonce, sealed = value.ciphertext[:NONCE_SIZE], value.ciphertext[NONCE_SIZE:]
        try:
            plain = self._aead.decrypt(nonce, sealed, _AAD_BOOL)
        except InvalidTag:
            raise ForeignCiphertext("ciphertext failed authentication") from None
        return plain == b"\x01"

    def _operand(self, value: Union['ConfidentialValue', int]) -> int:
        """Open a confidential operand, or pass a public integer through."""
        if isinstance(value, ConfidentialValue):
            return self._open(value)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise TypeError(f"operand must be ConfidentialValue or int, got {type(value).__name__}")

    # ------------------------------------------------------------------
    # Blind arithmetic
    # ------------------------------------------------------------------

    def add(self, a, b) -> 'ConfidentialValue':
        return self._seal(checked_add(self._operand(a), self._operand(b)))

    def sub(self, a, b) -> 'ConfidentialValue':
        return self._seal(checked_sub(self._operand(a), self._operand(b)))

    def mul(self, a, b) -> 'ConfidentialValue':
        return self._seal(checked_mul(self._operand(a), self._operand(b)))

    def scale(self, value, numerator, denominator) -> 'ConfidentialValue':
        return self._seal(mul_div(
            self._operand(value), self._operand(numerator), self._operand(denominator)
        ))

    def min(self, a, b) -> 'ConfidentialValue':
        return self._seal(min(self._operand(a), self._operand(b)))

    def max(self, a, b) -> 'ConfidentialValue':
        return self._seal(max(self._operand(a), self._operand(b)))

    def rerandomize(self, value: 'ConfidentialValue') -> 'ConfidentialValue':
        return self._seal(self._open(value))

    def select(self, predicate: 'ConfidentialBool', a, b) -> 'ConfidentialValue':
        return self._seal(self._operand(a) if self._open_bool(predicate) else self._operand(b))

    # ------------------------------------------------------------------
    # Hidden predicates
    # ------------------------------------------------------------------

    def lt(self, a, b) -> 'ConfidentialBool':
        return self._seal_bool(self._operand(a) < self._operand(b))

    def le(self, a, b) -> 'ConfidentialBool':
        return self._seal_bool(self._operand(a) <= self._operand(b))

    def eq(self, a, b) -> 'ConfidentialBool':
        return self._seal_bool(self._operand(a) == self._operand(b))

    # ------------------------------------------------------------------
    # Declared reveals
    # ------------------------------------------------------------------

    def compare_and_reveal(self, a, b) -> Ordering:
        """Reveal only the ordering of a and b."""
        left, right = self._operand(a), self._operand(b)
        self.reveal_count += 1
        if left < right:
            return Ordering.LESS
        if left > right:
            return Ordering.GREATER
        return Ordering.EQUAL

    def reveal_bool(self, predicate: 'ConfidentialBool') -> bool:
        """Reveal a hidden predicate bit."""
        bit = self._open_bool(predicate)
        self.reveal_count += 1
        return bit


# ============================================================================
# HANDLES
# ============================================================================

def _fingerprint(ciphertext: bytes) -> str:
    return hashlib.sha256(ciphertext).hexdigest()[:12]


@dataclass(frozen=True, slots=True)
class ConfidentialValue:
    """
    Opaque handle over an encrypted non-negative integer amount.

    Equality and hashing are by ciphertext: two handles are equal only if
    they are the same encryption. This says nothing about the plaintexts;
    use compare_and_reveal() for that.

    Attributes:
        ciphertext: nonce || AES-GCM ciphertext
        enclave: The enclave that sealed the value (excluded from equality)
    """
    ciphertext: bytes
    enclave: ConfidentialEnclave = field(compare=False, repr=False)

    def __bool__(self):
        raise TypeError("ConfidentialValue has no truth value; use compare_and_reveal()")

    def __copy__(self) -> 'ConfidentialValue':
        return self

    def __deepcopy__(self, memo) -> 'ConfidentialValue':
        return self

    def __repr__(self) -> str:
        return f"ConfidentialValue(<{self.fingerprint}>)"

    @property
    def fingerprint(self) -> str:
        """Short ciphertext digest for logs and audit output."""
        return _fingerprint(self.ciphertext)

    @property
    def digest(self) -> str:
        """Full ciphertext digest, used for canonical hashing."""
        return hashlib.sha256(self.ciphertext).hexdigest()

    # Blind arithmetic -------------------------------------------------

    def add(self, other: Union['ConfidentialValue', int]) -> 'ConfidentialValue':
        return self.enclave.add(self, other)

    def sub(self, other: Union['ConfidentialValue', int]) -> 'ConfidentialValue':
        """Subtract; raises Underflow if the result would be negative."""
        return self.enclave.sub(self, other)

    def mul(self, other: Union['ConfidentialValue', int]) -> 'ConfidentialValue':
        return self.enclave.mul(self, other)

    def scale(
        self,
        numerator: Union['ConfidentialValue', int],
        denominator: Union['ConfidentialValue', int],
    ) -> 'ConfidentialValue':
        """
        Multiply then divide: floor(self * numerator / denominator).

        Either factor may itself be confidential. A zero denominator raises
        DivisionByZero.
        """
        return self.enclave.scale(self, numerator, denominator)

    def scale_by_ratio(
        self,
        numerator: 'ConfidentialValue',
        denominator: 'ConfidentialValue',
    ) -> 'ConfidentialValue':
        """Proportional share: floor(self * numerator / denominator), both confidential."""
        return self.enclave.scale(self, numerator, denominator)

    def min(self, other: Union['ConfidentialValue', int]) -> 'ConfidentialValue':
        return self.enclave.min(self, other)

    def max(self, other: Union['ConfidentialValue', int]) -> 'ConfidentialValue':
        return self.enclave.max(self, other)

    # Hidden predicates ------------------------------------------------

    def lt(self, other: Union['ConfidentialValue', int]) -> 'ConfidentialBool':
        return self.enclave.lt(self, other)

    def le(self, other: Union['ConfidentialValue', int]) -> 'ConfidentialBool':
        return self.enclave.le(self, other)

    def eq(self, other: Union['ConfidentialValue', int]) -> 'ConfidentialBool':
        return self.enclave.eq(self, other)

    # Declared reveals -------------------------------------------------

    def compare_and_reveal(self, other: Union['ConfidentialValue', int]) -> Ordering:
        return self.enclave.compare_and_reveal(self, other)

    def is_zero(self) -> bool:
        """Reveal only whether the amount equals zero."""
        return self.enclave.compare_and_reveal(self, 0) is Ordering.EQUAL


@dataclass(frozen=True, slots=True)
class ConfidentialBool:
    """Hidden predicate produced by a confidential comparison."""
    ciphertext: bytes
    enclave: ConfidentialEnclave = field(compare=False, repr=False)

    def __bool__(self):
        raise TypeError("ConfidentialBool has no truth value; call reveal()")

    def __copy__(self) -> 'ConfidentialBool':
        return self

    def __deepcopy__(self, memo) -> 'ConfidentialBool':
        return self

    def __repr__(self) -> str:
        return f"ConfidentialBool(<{_fingerprint(self.ciphertext)}>)"

    def reveal(self) -> bool:
        return self.enclave.reveal_bool(self)


# ============================================================================
# SELECTION
# ============================================================================

def confidential_select(
    predicate: Union[bool, ConfidentialBool],
    if_true: ConfidentialValue,
    if_false: ConfidentialValue,
) -> ConfidentialValue:
    """
    Choose between two ciphertexts without decrypting them in plaintext logic.

    With a revealed bool the choice is public but the amount is not; with a
    ConfidentialBool the choice itself stays hidden. Either way the result is
    a fresh encryption, never byte-equal to the operand it came from.

    Example:
        over = requested.compare_and_reveal(vault) is Ordering.GREATER
        reserved = confidential_select(over, vault, requested)
    """
    if if_true.enclave is not if_false.enclave:
        raise ForeignCiphertext("select operands come from different enclaves")
    enclave = if_true.enclave
    if isinstance(predicate, ConfidentialBool):
        return enclave.select(predicate, if_true, if_false)
    if isinstance(predicate, bool):
        return enclave.rerandomize(if_true if predicate else if_false)
    raise TypeError(f"predicate must be bool or ConfidentialBool, got {type(predicate).__name__}")


def as_confidential(enclave: ConfidentialEnclave, value: Union[ConfidentialValue, int]) -> ConfidentialValue:
    """
    Normalise a plain or confidential input (e.g. an oracle price) to a fresh handle.

    A handle input is re-encrypted, so posting the same handle twice yields
    two distinct moves rather than one repeated intent.
    """
    if isinstance(value, ConfidentialValue):
        if value.enclave is not enclave:
            raise ForeignCiphertext("value was sealed by a different enclave")
        return enclave.rerandomize(value)
    return enclave.encrypt(value)
