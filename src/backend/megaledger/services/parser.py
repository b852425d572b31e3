"""
Reference parser service for extracting transaction references and
bundle quantities from receipt and confirmation text.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Callable

from megaledger.config import settings
from megaledger.models.receipt import ParsedReference, ReferenceType
from megaledger.utils.megas import parse_megabytes

logger = logging.getLogger(__name__)


# Zero-width and directional marks that survive copy/paste from banking apps
INVISIBLE_CHARS = re.compile('[\u00ad\u180e\u200b-\u200f\u202a-\u202e\u2060-\u2064\ufeff]')
WHITESPACE_RUN = re.compile(r'\s+')
REFERENCE_CHARSET = re.compile(r'^[A-Za-z0-9.\-_]+$')

# Replies the OCR collaborator uses when it finds nothing
OCR_NOT_FOUND_SENTINELS = {'NOT_FOUND', 'NAO_ENCONTRADA'}

# Network A code: 8-20 alphanumerics not continued by a separator + alphanumeric
MPESA_CODE = r'([A-Za-z0-9]{8,20})(?![.\-_]?[A-Za-z0-9])'

MPESA_MIN_LENGTH = 8
MPESA_MAX_LENGTH = 20
EMOLA_MIN_LENGTH = 4


@dataclass(frozen=True)
class PatternSpec:
    """A named regex pattern with example and notes for documentation."""
    name: str
    pattern: str
    example: str
    network: ReferenceType
    notes: Optional[str] = None
    flags: int = re.IGNORECASE
    compiled: re.Pattern = field(default=None, init=False, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, 'compiled', re.compile(self.pattern, self.flags))


def normalize_reference(raw: str) -> str:
    """
    Normalize a transaction reference for use as a store key.

    - Removes zero-width/invisible characters
    - Collapses whitespace runs to a single space and trims
    - Strips leading dots and every trailing dot
    - Preserves case

    Examples:
        >>> normalize_reference('ABC123...')
        'ABC123'
        >>> normalize_reference('aBc123.')
        'aBc123'
    """
    if not raw:
        return ''

    text = INVISIBLE_CHARS.sub('', raw)
    text = WHITESPACE_RUN.sub(' ', text)

    # Dots and spaces can alternate at the edges (". ABC123 ."), strip both together
    return text.strip(' .')


def is_valid_mpesa_reference(reference: str) -> bool:
    """Network A: letters and digits mixed, 8-20 chars, safe charset."""
    if not reference or not REFERENCE_CHARSET.match(reference):
        return False
    if not MPESA_MIN_LENGTH <= len(reference) <= MPESA_MAX_LENGTH:
        return False
    has_letter = any(char.isalpha() for char in reference)
    has_digit = any(char.isdigit() for char in reference)
    return has_letter and has_digit


def is_valid_emola_reference(reference: str, prefix: str = None) -> bool:
    """Network B: fixed prefix, at least one digit after it, safe charset."""
    prefix = prefix or settings.REFERENCE_PREFIX
    if not reference or not REFERENCE_CHARSET.match(reference):
        return False
    if len(reference) < EMOLA_MIN_LENGTH or not reference.startswith(prefix):
        return False
    return any(char.isdigit() for char in reference[len(prefix):])


class ReferenceParser:
    """Service for parsing payment references out of freeform text."""

    # Quantity labels seen on vendor confirmations
    AMOUNT_LABELS = ('Megas', 'Dados', 'Data size', 'Data', 'Pacote', 'Volume')

    def __init__(self, prefix: str = None, max_megabytes: int = None):
        """Initialize parser with regex grammars."""
        self.prefix = prefix or settings.REFERENCE_PREFIX
        self.max_megabytes = max_megabytes or settings.MAX_PURCHASE_MB
        self._init_patterns()

    def _init_patterns(self):
        """Initialize ordered grammars for both payment networks."""
        prefix = re.escape(self.prefix)

        self.mpesa_patterns = [
            PatternSpec(
                name='mpesa_confirmed',
                pattern=r'\bConfirm(?:ed|ado)\b[\s:.\-]*' + MPESA_CODE,
                example='Confirmado CI81H2KX1Z. Transferiste 50.00MT',
                network=ReferenceType.MPESA,
                notes='Code right after the "Confirmed" keyword (highest confidence)',
            ),
            PatternSpec(
                name='mpesa_leading_code',
                pattern=r'^\s*' + MPESA_CODE + r'\s*\.',
                example='CI81H2KX1Z. Confirmed. You have sent...',
                network=ReferenceType.MPESA,
                notes='SMS that opens with the code followed by a dot',
                flags=re.IGNORECASE | re.MULTILINE,
            ),
            PatternSpec(
                name='mpesa_reference_label',
                pattern=r'\b(?:Refer[eê]ncia|Reference|Ref)\b\s*[:#.]?\s*' + MPESA_CODE,
                example='Referência: CI81H2KX1Z',
                network=ReferenceType.MPESA,
            ),
            PatternSpec(
                name='mpesa_id_label',
                pattern=r'\b(?:Transaction\s+ID|ID\s+da\s+transa[cç][aã]o|ID|Code|C[oó]digo)\b\s*[:#]?\s*' + MPESA_CODE,
                example='Transaction ID: CI81H2KX1Z',
                network=ReferenceType.MPESA,
            ),
            PatternSpec(
                name='mpesa_bare_shape',
                pattern=r'(?<![A-Za-z0-9.\-_])([A-Z]{2,3}\d{2}[A-Z0-9]{6,10})\b(?![.\-_]?[A-Za-z0-9])',
                example='... pagamento CIB81H2KX1Z recebido',
                network=ReferenceType.MPESA,
                notes='Unlabelled code with the usual letters-then-digits opening',
            ),
        ]

        # Unseparated network B codes (PP2509181532) also fit the network A shape
        self.emola_digits_only = re.compile(prefix + r'\d+')

        emola_code = r'(' + prefix + r'\d+(?:[.\-_]+[A-Za-z0-9]+)*\.?)'

        self.emola_patterns = [
            PatternSpec(
                name='emola_transaction_id',
                pattern=r'\b(?:ID\s+da\s+transa[cç][aã]o|Transaction\s+ID)\b[\s:]+' + emola_code,
                example='ID da transacao: PP250918.1532.A71234',
                network=ReferenceType.EMOLA,
            ),
            PatternSpec(
                name='emola_reference_label',
                pattern=r'\b(?:Refer[eê]ncia|Reference)\b\s*:\s*' + emola_code,
                example='Referência: PP250918.1532.A71234',
                network=ReferenceType.EMOLA,
            ),
            PatternSpec(
                name='emola_bare',
                pattern=r'\b' + emola_code,
                example='PP250918.1532.A71234',
                network=ReferenceType.EMOLA,
                flags=0,
            ),
            PatternSpec(
                name='emola_longest_run',
                pattern=r'(' + prefix + r'\d+[.\w]*\d+[.\w]*\d+)',
                example='Ref PP250918x1532x71234 processada',
                network=ReferenceType.EMOLA,
                notes='Loose fallback; the longest match is taken',
                flags=0,
            ),
        ]

        self.amount_patterns = [
            PatternSpec(
                name='labelled_megabytes',
                pattern=r'\b(?:' + '|'.join(re.escape(label) for label in self.AMOUNT_LABELS) + r')\b\s*:?\s*(\d+)\s*MB\b',
                example='Megas: 1024 MB',
                network=ReferenceType.UNKNOWN,
            ),
            PatternSpec(
                name='bare_megabytes',
                pattern=r'(?<![\d.,])(\d+)\s*MB\b',
                example='1024MB',
                network=ReferenceType.UNKNOWN,
            ),
        ]

    def _validator_for(self, network: ReferenceType) -> Callable[[str], bool]:
        if network == ReferenceType.EMOLA:
            return lambda reference: is_valid_emola_reference(reference, self.prefix)
        return is_valid_mpesa_reference

    def _first_validated(self, text: str, patterns: List[PatternSpec]) -> Optional[ParsedReference]:
        """
        Run grammars in order and return the first match that validates.

        The longest-run grammar considers every match, longest first.
        Network A grammars never claim a prefix-plus-digits network B code.
        """
        for spec in patterns:
            matches = [match.group(1) for match in spec.compiled.finditer(text)]
            if spec.name == 'emola_longest_run':
                matches.sort(key=len, reverse=True)

            validator = self._validator_for(spec.network)
            for raw in matches:
                reference = normalize_reference(raw)
                if spec.network == ReferenceType.MPESA and self.emola_digits_only.fullmatch(reference):
                    continue
                if validator(reference):
                    logger.debug("Reference matched", extra={
                        "pattern": spec.name,
                        "reference": reference,
                    })
                    return ParsedReference(
                        reference=reference,
                        raw=raw,
                        reference_type=spec.network,
                        pattern_name=spec.name,
                    )
        return None

    def extract_reference(self, text: str) -> Optional[ParsedReference]:
        """
        Extract a transaction reference from message text.

        Network A grammars are tried first, then network B.

        Args:
            text: Message body or OCR output

        Returns:
            ParsedReference or None if nothing validates
        """
        if not text:
            return None

        cleaned = INVISIBLE_CHARS.sub('', text)
        return (
            self._first_validated(cleaned, self.mpesa_patterns)
            or self._first_validated(cleaned, self.emola_patterns)
        )

    def extract_amount(self, text: str) -> Optional[int]:
        """
        Extract the purchased quantity in megabytes.

        Returns the first captured integer in (0, MAX_PURCHASE_MB].
        """
        if not text:
            return None

        for spec in self.amount_patterns:
            for match in spec.compiled.finditer(text):
                megabytes = parse_megabytes(match.group(1), self.max_megabytes)
                if megabytes is not None:
                    return megabytes
                logger.debug("Rejected implausible quantity", extra={
                    "pattern": spec.name,
                    "value": match.group(1),
                })
        return None

    def classify_reference(self, reference: str) -> ReferenceType:
        """Network of an already normalized reference."""
        if is_valid_emola_reference(reference, self.prefix):
            return ReferenceType.EMOLA
        if is_valid_mpesa_reference(reference):
            return ReferenceType.MPESA
        return ReferenceType.UNKNOWN

    def reference_from_ocr(self, text: Optional[str]) -> Optional[ParsedReference]:
        """
        Accept a reference read from a receipt image.

        The OCR output goes through the same grammars; when it is just the
        bare code, the normalized text itself must pass a network validator.
        """
        if text is None:
            return None

        stripped = text.strip()
        if not stripped or stripped.upper() in OCR_NOT_FOUND_SENTINELS:
            return None

        parsed = self.extract_reference(stripped)
        if parsed:
            return parsed

        reference = normalize_reference(stripped)
        reference_type = self.classify_reference(reference)
        if reference_type == ReferenceType.UNKNOWN:
            logger.info("OCR text is not a valid reference", extra={"ocr_text": stripped[:80]})
            return None

        return ParsedReference(
            reference=reference,
            raw=stripped,
            reference_type=reference_type,
            pattern_name='ocr_whole_text',
        )
