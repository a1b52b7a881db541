from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone

from solders.pubkey import Pubkey

from app.core.nlu import strip_mentions
from app.db.models import MarketParams, ResolverConfig, UmaResolver, WalletVoteResolver

LABELS = ("Q", "CAT", "END", "WALLET", "DESC", "RULES", "RESOLVER")
_LABEL_ALT = "|".join(LABELS)
NEXT_LABEL_RE = re.compile(rf"\s+(?:{_LABEL_ALT}):", re.IGNORECASE)
LEADING_LABEL_RE = re.compile(rf"^(?:{_LABEL_ALT}):", re.IGNORECASE)
CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
END_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MAX_QUESTION_LENGTH = 200
MAX_CATEGORY_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 500
MAX_RULES_LENGTH = 500

ERR_IMAGE_REQUIRED = "Please attach an image to your tweet for the market thumbnail"
ERR_RESOLVER_FORMAT = 'RESOLVER must be "UMA" or a comma-separated list of Solana wallet addresses'


@dataclass
class ParseResult:
    success: bool
    params: MarketParams | None = None
    fee_receiver_wallet: str | None = None
    errors: list[str] = field(default_factory=list)
    needs_image: bool = False


def _line_pattern(label: str) -> re.Pattern[str]:
    return re.compile(rf"^[ \t]*{label}:[ \t]*(.+)$", re.IGNORECASE | re.MULTILINE)


def _inline_pattern(label: str) -> re.Pattern[str]:
    return re.compile(
        rf"(?:^|\s){label}:[ \t]*(\S.*?)(?=\s+(?:{_LABEL_ALT}):|\s*$)",
        re.IGNORECASE | re.DOTALL,
    )


_LINE_PATTERNS = {label: _line_pattern(label) for label in LABELS}
_INLINE_PATTERNS = {label: _inline_pattern(label) for label in LABELS}


def _field_value(raw: str) -> str | None:
    value = raw.strip()
    # "Q: CAT: crypto" leaves Q blank rather than borrowing the next label
    if not value or LEADING_LABEL_RE.match(value):
        return None
    return value


def extract_field(text: str, label: str) -> str | None:
    line_match = _LINE_PATTERNS[label].search(text)
    if line_match:
        return _field_value(NEXT_LABEL_RE.split(line_match.group(1), maxsplit=1)[0])

    inline_match = _INLINE_PATTERNS[label].search(text)
    if inline_match:
        return _field_value(inline_match.group(1))
    return None


def sanitize_text(text: str) -> str:
    return CONTROL_CHARS_RE.sub("", text).strip()


def is_valid_solana_address(address: str) -> bool:
    try:
        Pubkey.from_string(address)
    except ValueError:
        return False
    return True


def end_of_day(value: date) -> datetime:
    return datetime.combine(value, time(23, 59, 59), tzinfo=timezone.utc)


def _parse_end_date(raw: str | None, now: datetime, errors: list[str]) -> date | None:
    if not raw:
        errors.append("END (end date) is required")
        return None
    try:
        if not END_DATE_RE.match(raw):
            raise ValueError(raw)
        parsed = datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        errors.append("END must be a valid date (YYYY-MM-DD)")
        return None
    if end_of_day(parsed) <= now:
        errors.append("END must be a future date")
        return None
    return parsed


def parse_resolver(raw: str | None) -> tuple[ResolverConfig, list[str]]:
    if not raw or raw.strip().lower() == "uma":
        return UmaResolver(), []

    addresses = [item.strip() for item in raw.split(",") if item.strip()]
    errors: list[str] = []
    voters: list[str] = []
    for addr in addresses:
        if is_valid_solana_address(addr):
            voters.append(addr)
        else:
            errors.append(f"Invalid resolver wallet: {addr}")

    if not voters and not errors:
        errors.append(ERR_RESOLVER_FORMAT)
    if errors:
        return UmaResolver(), errors
    return WalletVoteResolver(voters=voters), []


def _check_length(label: str, value: str | None, limit: int, errors: list[str]) -> None:
    if value and len(value) > limit:
        errors.append(f"{label} must be under {limit} characters")


def parse_template(text: str, has_image: bool = False, now: datetime | None = None) -> ParseResult:
    now = now or datetime.now(timezone.utc)
    cleaned = strip_mentions(text)
    errors: list[str] = []

    raw = {label: extract_field(cleaned, label) for label in LABELS}
    question = sanitize_text(raw["Q"]) if raw["Q"] else ""
    category = sanitize_text(raw["CAT"]) if raw["CAT"] else ""
    description = sanitize_text(raw["DESC"]) if raw["DESC"] else None
    rules = sanitize_text(raw["RULES"]) if raw["RULES"] else None
    wallet = raw["WALLET"]

    if not question:
        errors.append("Q (question) is required")
    _check_length("Q", question, MAX_QUESTION_LENGTH, errors)
    if not category:
        errors.append("CAT (category) is required")
    _check_length("CAT", category, MAX_CATEGORY_LENGTH, errors)
    _check_length("DESC", description, MAX_DESCRIPTION_LENGTH, errors)
    _check_length("RULES", rules, MAX_RULES_LENGTH, errors)

    end_date = _parse_end_date(raw["END"], now, errors)

    if not wallet:
        errors.append("WALLET (Solana wallet address) is required")
    elif not is_valid_solana_address(wallet):
        errors.append("WALLET must be a valid Solana wallet address")

    if not has_image:
        errors.append(ERR_IMAGE_REQUIRED)

    resolver, resolver_errors = parse_resolver(raw["RESOLVER"])
    errors.extend(resolver_errors)

    if errors or end_date is None or wallet is None:
        return ParseResult(success=False, errors=errors, needs_image=not has_image)

    params = MarketParams(
        question=question,
        category=category,
        end_date=end_date,
        description=description or None,
        rules=rules or None,
        resolver_type=resolver,
    )
    return ParseResult(success=True, params=params, fee_receiver_wallet=wallet)


def build_template_prompt(username: str) -> str:
    return (
        f"@{username} To create a market, reply with an image and:\n\n"
        "Q: [Your yes/no question]\n"
        "CAT: [Category e.g. crypto, sports]\n"
        "END: [YYYY-MM-DD]\n"
        "WALLET: [Your Solana wallet]\n\n"
        "Optional:\n"
        "DESC: [Description]\n"
        "RULES: [Resolution rules]\n"
        "RESOLVER: [UMA (default) or wallet1,wallet2,...]"
    )
