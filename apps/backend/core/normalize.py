"""
Record normalization.

Maps the shape-varying nodes produced by the extraction strategies (JSON-LD
JobPosting objects, embedded search-state payloads, DOM card dicts) to one
canonical JobRecord. Each output field has an ordered list of source paths;
the first present, non-empty value wins.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from core.errors import MalformedNodeError
from core.models import ClientInfo, JobRecord

logger = logging.getLogger(__name__)

NOT_SPECIFIED = "Not specified"
WORLDWIDE = "Worldwide"
MAX_SKILLS = 10

CURRENCY_SYMBOLS = {
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
    'INR': '₹',
}

# Ordered source paths per canonical field
FIELD_PATHS: Dict[str, Tuple[str, ...]] = {
    'job_id': ('ciphertext', 'id', 'uid', 'jobId', 'identifier.value', 'identifier'),
    'title': ('title', 'jobTitle', 'name'),
    'url': ('url', 'jobUrl', 'link'),
    'company': (
        'client.companyName', 'enterpriseName', 'hiringOrganization.name',
        'hiringOrganization', 'companyName', 'company',
    ),
    'description': ('description', 'snippet', 'descriptionText', 'summary'),
    'skills': ('skills', 'attrs', 'skillNames', 'ontologySkills'),
    'location': (
        'client.location.country', 'prefFreelancerLocation',
        'jobLocation.address.addressCountry', 'applicantLocationRequirements.name',
    ),
    'job_type': ('type', 'jobType', 'contractType', 'employmentType'),
    'experience_level': (
        'tierText', 'tier', 'experienceLevel', 'contractorTier', 'experienceRequirements',
    ),
    'duration': ('duration', 'durationLabel', 'durationIdV3', 'engagementDuration.label'),
    'date_posted': ('createdOn', 'publishedOn', 'createdDateTime', 'datePosted', 'publishTime'),
    'proposals': ('totalApplicants', 'proposalsTier', 'applicants'),
    'client_rating': ('client.totalFeedback', 'totalFeedback', 'client.rating'),
    'client_reviews': ('client.totalReviews', 'client.reviews'),
    'client_jobs_posted': ('client.totalPostedJobs', 'client.jobsPosted'),
    'client_hire_rate': ('client.hireRate', 'client.totalHires'),
    'client_location': ('client.location.country', 'client.country', 'client.location'),
    'client_spent': ('client.totalSpent.amount', 'client.totalSpent'),
}


def get_path(node: Any, path: str) -> Any:
    """Resolve a dotted path (``client.location.country``) in nested dicts."""
    current = node
    for part in path.split('.'):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    if isinstance(value, (list, tuple, dict)) and len(value) == 0:
        return False
    return True


def first_value(node: Dict, paths: Sequence[str]) -> Any:
    """Return the first present value among ``paths``."""
    for path in paths:
        value = get_path(node, path)
        if is_present(value):
            return value
    return None


def strip_markup(value: Optional[str]) -> Optional[str]:
    """Convert an HTML fragment to plain text with collapsed whitespace."""
    if value is None:
        return None
    text = str(value)
    if '<' in text and '>' in text:
        text = BeautifulSoup(text, 'lxml').get_text(' ')
    text = re.sub(r'\s+', ' ', text).strip()
    return text or None


def _format_number(amount: float) -> str:
    if float(amount).is_integer():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


def format_currency(value: Any, currency: Optional[str] = 'USD') -> Optional[str]:
    """
    Format a numeric amount as a currency string.

    Strings that are not plain numbers (``"$500"``, ``"Less than $500"``)
    are returned stripped, as the site already formatted them.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        cleaned = value.strip().replace(',', '')
        if not cleaned:
            return None
        try:
            value = float(cleaned)
        except ValueError:
            return value.strip()
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None

    code = (currency or 'USD').upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{symbol}{_format_number(amount)}"
    return f"{code} {_format_number(amount)}"


def format_hourly_range(low: Any, high: Any, currency: Optional[str] = 'USD') -> Optional[str]:
    """Combine hourly min/max into ``$15-$30/hr`` (or ``$15/hr`` when equal or one-sided)."""
    low_str = format_currency(low, currency) if is_present(low) else None
    high_str = format_currency(high, currency) if is_present(high) else None
    if low_str and high_str and low_str != high_str:
        return f"{low_str}-{high_str}/hr"
    single = low_str or high_str
    if single:
        return f"{single}/hr"
    return None


def to_bool(value: Any) -> bool:
    """Parse verification flags that arrive as bools, 1/0 or strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'verified')
    return False


def to_number(value: Any) -> Optional[Union[int, float]]:
    """Parse ``4.9``, ``"4.9"``, ``"12 reviews"`` into a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    match = re.search(r'-?\d+(?:[.,]\d+)?', str(value))
    if not match:
        return None
    number = float(match.group(0).replace(',', '.'))
    return int(number) if number.is_integer() else number


def parse_posted_date(value: Any) -> Optional[str]:
    """
    Parse a posted date to ISO-8601.

    Relative strings the site renders on cards ("2 hours ago", "yesterday")
    are kept verbatim because they cannot be anchored without the page time.
    """
    if not is_present(value):
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds are common in embedded state
        seconds = value / 1000 if value > 10_000_000_000 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
        except (ValueError, OverflowError, OSError) as e:
            logger.debug(f"[normalize] Timestamp out of range {value!r}: {e}")
            return None
    text = str(value).strip()
    if re.search(r'\bago\b|yesterday|just now|today', text, re.IGNORECASE):
        return text
    try:
        return date_parser.parse(text).isoformat()
    except (ValueError, OverflowError) as e:
        logger.debug(f"[normalize] Unparseable date {text!r}: {e}")
        return text


def norm_skills(value: Any, limit: int = MAX_SKILLS) -> List[str]:
    """Flatten skill tokens (strings, ``{prettyName}``/``{name}`` dicts, CSV strings)."""
    if not is_present(value):
        return []
    if isinstance(value, str):
        items: List[Any] = [s for s in re.split(r'[,;|]', value)]
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        items = [value]

    skills: List[str] = []
    seen = set()
    for item in items:
        if isinstance(item, dict):
            name = item.get('prettyName') or item.get('name') or item.get('prefLabel')
        else:
            name = item
        if not is_present(name):
            continue
        name = re.sub(r'\s+', ' ', str(name)).strip()
        if name.lower() in seen:
            continue
        seen.add(name.lower())
        skills.append(name)
        if len(skills) >= limit:
            break
    return skills


def _as_text(value: Any) -> Optional[str]:
    if not is_present(value):
        return None
    if isinstance(value, dict):
        value = value.get('name') or value.get('label') or value.get('value')
        if not is_present(value):
            return None
    if isinstance(value, (list, tuple)):
        value = ', '.join(str(v) for v in value if is_present(v))
    return re.sub(r'\s+', ' ', str(value)).strip() or None


def _salary_fields(node: Dict) -> Tuple[Optional[str], Optional[str]]:
    """Budget and hourly rate from a JSON-LD ``baseSalary`` MonetaryAmount."""
    salary = node.get('baseSalary')
    if not isinstance(salary, dict):
        return None, None
    currency = salary.get('currency') or 'USD'
    value = salary.get('value')
    if isinstance(value, dict):
        unit = str(value.get('unitText') or '').upper()
        low = value.get('minValue')
        high = value.get('maxValue')
        amount = value.get('value')
        if unit == 'HOUR':
            return None, format_hourly_range(low if low is not None else amount, high, currency)
        if is_present(amount):
            return format_currency(amount, currency), None
        if is_present(low) or is_present(high):
            low_str = format_currency(low, currency)
            high_str = format_currency(high, currency)
            return '-'.join(s for s in (low_str, high_str) if s), None
        return None, None
    if is_present(value):
        return format_currency(value, currency), None
    return None, None


class RecordNormalizer:
    """Maps RawJobNodes to JobRecords."""

    def __init__(self, base_url: str = "https://www.upwork.com", source: str = "upwork"):
        self.base_url = base_url.rstrip('/')
        self.source = source

    def normalize(self, node: Any, extraction_method: Optional[str] = None) -> Optional[JobRecord]:
        """
        Normalize one raw node.

        Returns:
            JobRecord, or None if the node could not be mapped. Never raises.
            The record may lack a title; the caller discards those.
        """
        try:
            return self._build(node, extraction_method)
        except Exception as e:
            logger.warning(f"[normalize] Dropping malformed node: {e}")
            return None

    def normalize_many(self, nodes: Sequence[Any], extraction_method: Optional[str] = None) -> List[JobRecord]:
        records = []
        for node in nodes:
            record = self.normalize(node, extraction_method)
            if record is not None:
                records.append(record)
        return records

    def _build(self, node: Any, extraction_method: Optional[str]) -> JobRecord:
        if not isinstance(node, dict):
            raise MalformedNodeError(f"expected a mapping, got {type(node).__name__}")

        job_id = _as_text(first_value(node, FIELD_PATHS['job_id']))
        title = strip_markup(_as_text(first_value(node, FIELD_PATHS['title'])))

        url = _as_text(first_value(node, FIELD_PATHS['url']))
        if not url and job_id:
            url = f"{self.base_url}/jobs/{job_id}"

        raw_description = first_value(node, FIELD_PATHS['description'])
        description = strip_markup(_as_text(raw_description))
        description_html = None
        if raw_description is not None:
            raw_text = str(raw_description)
            description_html = raw_text if '<' in raw_text else f"<p>{raw_text}</p>"

        budget, hourly_rate = self._money(node)

        proposals = first_value(node, FIELD_PATHS['proposals'])
        if isinstance(proposals, str) and proposals.strip().isdigit():
            proposals = int(proposals.strip())

        spent = first_value(node, FIELD_PATHS['client_spent'])
        spent_currency = get_path(node, 'client.totalSpent.currencyCode') or 'USD'

        client = ClientInfo(
            rating=to_number(first_value(node, FIELD_PATHS['client_rating'])),
            reviews=to_number(first_value(node, FIELD_PATHS['client_reviews'])),
            jobs_posted=to_number(first_value(node, FIELD_PATHS['client_jobs_posted'])),
            hire_rate=first_value(node, FIELD_PATHS['client_hire_rate']),
            location=_as_text(first_value(node, FIELD_PATHS['client_location'])),
            payment_verified=self._verified(node),
            total_spent=format_currency(spent, spent_currency) if not isinstance(spent, dict) else None,
        )

        return JobRecord(
            job_id=job_id,
            title=title,
            description=description,
            description_html=description_html,
            company=_as_text(first_value(node, FIELD_PATHS['company'])) or NOT_SPECIFIED,
            skills=tuple(norm_skills(first_value(node, FIELD_PATHS['skills']))),
            location=_as_text(first_value(node, FIELD_PATHS['location'])) or WORLDWIDE,
            job_type=_as_text(first_value(node, FIELD_PATHS['job_type'])),
            experience_level=_as_text(first_value(node, FIELD_PATHS['experience_level'])),
            budget=budget,
            hourly_rate=hourly_rate,
            duration=_as_text(first_value(node, FIELD_PATHS['duration'])),
            date_posted=parse_posted_date(first_value(node, FIELD_PATHS['date_posted'])),
            proposals=proposals,
            client=client,
            url=url,
            source=self.source,
            extraction_method=extraction_method,
        )

    def _money(self, node: Dict) -> Tuple[Optional[str], Optional[str]]:
        budget = None
        hourly = None

        amount = node.get('amount')
        if isinstance(amount, dict) and is_present(amount.get('amount')):
            budget = format_currency(amount['amount'], amount.get('currencyCode') or 'USD')
        elif is_present(amount) and not isinstance(amount, dict):
            budget = format_currency(amount)
        elif is_present(node.get('budget')):
            raw = node['budget']
            if isinstance(raw, dict):
                budget = format_currency(raw.get('amount'), raw.get('currencyCode') or 'USD')
            else:
                budget = format_currency(raw)

        low = first_value(node, ('hourlyBudgetMin', 'hourlyBudget.min'))
        high = first_value(node, ('hourlyBudgetMax', 'hourlyBudget.max'))
        if is_present(low) or is_present(high):
            hourly = format_hourly_range(low, high)
        elif is_present(node.get('hourlyBudgetText')):
            hourly = str(node['hourlyBudgetText']).strip()

        if budget is None and hourly is None:
            budget, hourly = _salary_fields(node)
        return budget, hourly

    def _verified(self, node: Dict) -> bool:
        for path in ('client.paymentVerificationStatus', 'client.verificationStatus', 'client.paymentVerified'):
            value = get_path(node, path)
            if value is not None and to_bool(value):
                return True
        return False
