"""
Configuration validation for the fleet back-office
Checks environment variables and the database-backed slab settings
"""
import os
import logging
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

class ConfigValidationError(Exception):
    """Raised when critical configuration is missing or invalid"""
    pass

def validate_flask_config() -> Tuple[bool, List[str]]:
    """
    Validate Flask configuration for production.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    session_secret = os.getenv('SESSION_SECRET')
    if not session_secret:
        issues.append("Missing SESSION_SECRET environment variable")
    elif len(session_secret) < 32:
        issues.append("SESSION_SECRET should be at least 32 characters for security")

    if not os.getenv('JWT_SECRET_KEY'):
        issues.append("JWT_SECRET_KEY not set - falling back to SESSION_SECRET for driver tokens")

    debug_mode = os.getenv('DEBUG', 'False').lower()
    if debug_mode in ('true', '1', 'yes'):
        issues.append("DEBUG mode is enabled - should be disabled in production")

    return len(issues) == 0, issues

def validate_business_config() -> Tuple[bool, List[str]]:
    """
    Validate the numeric business settings read from the environment.

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []

    numeric_vars = {
        'OVERDUE_WINDOW_DAYS': int,
        'REFUND_THRESHOLD': float,
        'WEEKLY_RENT_PER_DAY': float,
    }
    for var_name, cast in numeric_vars.items():
        raw = os.getenv(var_name)
        if raw is None:
            continue
        try:
            value = cast(raw)
        except ValueError:
            issues.append(f"{var_name} must be a number, got '{raw}'")
            continue
        if value <= 0:
            issues.append(f"{var_name} must be positive")

    database_url = os.getenv('DATABASE_URL', '')
    if not database_url:
        issues.append("DATABASE_URL not set - using local SQLite database")

    return len(issues) == 0, issues

def validate_slab_rows(rows: Any, non_increasing: bool = True) -> Tuple[bool, List[str]]:
    """
    Validate a configured slab table.

    Rows are checked in ascending min_trips order: ranges must not overlap,
    and with non_increasing set (rent tables) no slab may charge more than
    the slab below it.

    Args:
        rows: list of {min_trips, max_trips, amount} dicts
        non_increasing: refuse amounts that rise with trips

    Returns:
        tuple: (is_valid: bool, issues: List[str])
    """
    issues = []
    if not isinstance(rows, list) or not rows:
        return False, ["Slab table must be a non-empty list"]

    parsed = []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            issues.append(f"Slab {index}: expected an object")
            continue
        missing = [field for field in ('min_trips', 'amount') if field not in row]
        if missing:
            issues.extend(f"Slab {index}: missing '{field}'" for field in missing)
            continue
        try:
            min_trips = int(row['min_trips'])
            max_trips = None if row.get('max_trips') is None else int(row['max_trips'])
            amount = float(row['amount'])
        except (TypeError, ValueError):
            issues.append(f"Slab {index}: min_trips, max_trips and amount must be numeric")
            continue
        if min_trips < 0:
            issues.append(f"Slab {index}: min_trips must not be negative")
        if max_trips is not None and max_trips < min_trips:
            issues.append(f"Slab {index}: max_trips is below min_trips")
            continue
        if amount < 0:
            issues.append(f"Slab {index}: amount must not be negative")
        parsed.append((min_trips, max_trips, amount, index))

    parsed.sort(key=lambda slab: slab[0])
    for (lo, hi, amount, index), (next_lo, _, next_amount, next_index) in zip(parsed, parsed[1:]):
        if hi is None or hi >= next_lo:
            issues.append(f"Slab {next_index}: range starting at {next_lo} trips overlaps slab {index}")
        if non_increasing and next_amount > amount:
            issues.append(f"Slab {next_index}: amount {next_amount:g} at {next_lo}+ trips "
                          f"is higher than {amount:g} below it")

    return len(issues) == 0, issues

def check_production_readiness() -> Dict[str, Any]:
    """
    Comprehensive check of production readiness.

    Returns:
        dict: Status information including issues
    """
    flask_valid, flask_issues = validate_flask_config()
    business_valid, business_issues = validate_business_config()

    all_issues = flask_issues + business_issues
    result = {
        'production_ready': flask_valid and business_valid,
        'issues': all_issues,
    }

    if result['production_ready']:
        logger.info("CONFIG: Production readiness check PASSED")
    else:
        logger.warning(f"CONFIG: Production readiness check FAILED - Issues: {len(all_issues)}")
        for issue in all_issues:
            logger.warning(f"CONFIG: Issue - {issue}")

    return result

def require_valid_config():
    """Raise ConfigValidationError when a setting would break startup."""
    _, business_issues = validate_business_config()
    fatal = [issue for issue in business_issues if 'must be' in issue]
    if not os.getenv('SESSION_SECRET'):
        fatal.append("Missing SESSION_SECRET environment variable")
    if fatal:
        raise ConfigValidationError("; ".join(fatal))
