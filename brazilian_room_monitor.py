import requests
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple
import logging
import os
import subprocess
import sys
import time

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
}

# status values observed in the API
STATUS_AVAILABLE = 0
RESPONSE_OK = "0000"

SATURDAY = 5

# ===== USER CONFIG =====
RESOURCE_ID = 150
RESOURCE_NAME = "Brazilian Room"
NTFY_SERVER = "https://ntfy.sh"
NTFY_TOPIC = "brazilian-room-pfr"
# June-August 2027 in chunks of at most 44 days (API limit)
DATE_RANGES = (
    ("2027-06-01", "2027-07-14"),
    ("2027-07-15", "2027-08-27"),
    ("2027-08-28", "2027-08-31"),
)
TIMEOUT = 20
# =======================

log = logging.getLogger(__name__)


class MonitorError(Exception):
    pass


class RequestError(MonitorError):
    """The HTTP request failed or came back non-2xx."""


class ApiError(MonitorError):
    """The API answered but its envelope reports a failure."""


@dataclass(frozen=True)
class MonitorConfig:
    resource_id: int = RESOURCE_ID
    resource_name: str = RESOURCE_NAME
    ntfy_topic: str = NTFY_TOPIC
    ntfy_server: str = NTFY_SERVER
    date_ranges: Tuple[Tuple[str, str], ...] = DATE_RANGES
    target_weekday: int = SATURDAY
    timeout: float = TIMEOUT

    @property
    def api_url(self):
        return (
            "https://anc.apm.activecommunities.com/ebparks/rest/reservation/resource"
            f"/availability/daily/{self.resource_id}"
        )


def load_config():
    return MonitorConfig(ntfy_topic=os.environ.get("NTFY_TOPIC", NTFY_TOPIC))


@dataclass
class DailyDetail:
    date: Optional[str]
    status: Optional[int]
    times: list = field(default_factory=list)

    @classmethod
    def from_json(cls, raw):
        return cls(date=raw.get("date"), status=raw.get("status"), times=raw.get("times") or [])

    @property
    def is_available(self):
        return self.status == STATUS_AVAILABLE and len(self.times) > 0


@dataclass
class CheckResult:
    available: List[str] = field(default_factory=list)
    exit_code: int = 0
    error: Optional[str] = None


# ----- dates -----

def parse_day(date_str):
    # noon keeps the calendar day stable whatever the local offset
    return datetime.strptime(f"{date_str[:10]}T12:00:00", "%Y-%m-%dT%H:%M:%S")


def is_target_weekday(date_str, weekday=SATURDAY):
    # a missing or malformed date never lands on the target day
    if not isinstance(date_str, str):
        return False
    try:
        return parse_day(date_str).weekday() == weekday
    except ValueError:
        return False


def format_label(date_str):
    d = parse_day(date_str)
    return f"{d:%A}, {d:%B} {d.day}, {d.year}"


def format_short(date_str):
    d = parse_day(date_str)
    return f"{d:%b} {d.day}"


# ----- fetch / check -----

def fetch_range(start_date, end_date, config, session=requests):
    params = {
        "start_date": start_date,
        "end_date": end_date,
        "customer_id": 0,
        "company_id": 0,
        "locale": "en-US",
    }
    try:
        r = session.get(config.api_url, headers=HEADERS, params=params, timeout=config.timeout)
    except requests.RequestException as e:
        raise RequestError(f"Request failed for range {start_date}–{end_date}: {e}") from e

    if not r.ok:
        raise RequestError(f"API returned HTTP {r.status_code} for range {start_date}–{end_date}")

    try:
        data = r.json()
    except ValueError as e:
        raise ApiError(f"API returned invalid JSON for range {start_date}–{end_date}") from e

    if not isinstance(data, dict):
        raise ApiError(f"API returned an unexpected body for range {start_date}–{end_date}")

    headers = _section(data, "headers", start_date, end_date)
    if headers.get("response_code") != RESPONSE_OK:
        raise ApiError(
            f"API error for range {start_date}–{end_date}: {headers.get('response_message')}"
        )

    body = _section(data, "body", start_date, end_date)
    details = _section(body, "details", start_date, end_date)
    daily = details.get("daily_details") or []
    if not isinstance(daily, list) or not all(isinstance(d, dict) for d in daily):
        raise ApiError(f"API returned malformed daily_details for range {start_date}–{end_date}")
    return [DailyDetail.from_json(d) for d in daily]


def _section(data, key, start_date, end_date):
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ApiError(f"API returned a malformed '{key}' for range {start_date}–{end_date}")
    return value


def check_availability(config, session=requests):
    all_details = []
    for start, end in config.date_ranges:
        all_details.extend(fetch_range(start, end, config, session=session))

    if not all_details:
        log.warning("API returned no daily_details — response may have changed.")

    available = []
    for entry in all_details:
        if not is_target_weekday(entry.date, config.target_weekday):
            continue

        label = format_label(entry.date)
        if entry.is_available:
            log.info(f"  AVAILABLE on {label}")
            available.append(entry.date)
        else:
            log.info(f"  Not available on {label}")

    return available


# ----- notifications -----

class Notifier:
    name = "notifier"

    def send(self, title: str, message: str) -> bool:
        raise NotImplementedError


class DesktopNotifier(Notifier):
    """macOS banner through osascript."""

    name = "desktop"

    def __init__(self, command="osascript", sound="Glass"):
        self.command = command
        self.sound = sound

    def send(self, title, message):
        script = (
            f'display notification "{_quote(message)}" with title "{_quote(title)}" '
            f'sound name "{self.sound}"'
        )
        try:
            result = subprocess.run([self.command, "-e", script], capture_output=True)
        except OSError as e:
            log.error(f"Desktop notification failed ({e})")
            return False
        if result.returncode != 0:
            log.error(f"Desktop notification failed (exit code {result.returncode})")
            return False
        log.info("Desktop notification sent.")
        return True


class NtfyNotifier(Notifier):
    name = "push"

    def __init__(self, config, session=requests, priority="high", tags="calendar"):
        self.url = f"{config.ntfy_server.rstrip('/')}/{config.ntfy_topic}"
        self.timeout = config.timeout
        self.session = session
        self.priority = priority
        self.tags = tags

    def send(self, title, message):
        headers = {"Title": title, "Priority": self.priority, "Tags": self.tags}
        try:
            r = self.session.post(
                self.url, data=message.encode("utf-8"), headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            log.error(f"ntfy notification failed ({e})")
            return False
        if not r.ok:
            log.error(f"ntfy notification failed (HTTP {r.status_code})")
            return False
        log.info("ntfy notification sent.")
        return True


def _quote(s):
    return s.replace("\\", "\\\\").replace('"', '\\"')


# ----- entry point -----

# wording assumes the default target_weekday (SATURDAY)
NO_AVAILABILITY_MESSAGE = "No availability found for any target Saturday."


def default_notifiers(config, session=requests):
    notifiers = [DesktopNotifier(), NtfyNotifier(config, session=session)]
    return {n.name: n for n in notifiers}


def run_check(config, session=requests, notifiers=None):
    if notifiers is None:
        notifiers = default_notifiers(config, session=session)

    log.info(f"=== {config.resource_name} availability check starting ===")

    try:
        available = check_availability(config, session=session)
    except MonitorError as e:
        log.error(f"Fatal: {e}")
        return CheckResult(exit_code=1, error=str(e))

    if available:
        summary = " | ".join(format_short(d) for d in available)
        detail = "\n".join(f"  • {format_label(d)}" for d in available)
        log.info(f"AVAILABLE DATES FOUND:\n{detail}")
        title = f"{config.resource_name} AVAILABLE!"
        message = f"Open on: {summary}"
        channels = ["desktop", "push"]
    else:
        title = f"{config.resource_name} NOT AVAILABLE!"
        message = NO_AVAILABILITY_MESSAGE
        # the desktop banner is reserved for good news
        channels = ["push"]

    for name in channels:
        notifier = notifiers.get(name)
        if notifier is not None:
            notifier.send(title, message)

    if not available:
        log.info(NO_AVAILABILITY_MESSAGE)

    log.info("=== Check complete ===\n")
    return CheckResult(available=available)


def setup_logging(level=logging.INFO, stream=None):
    formatter = logging.Formatter(
        "%(asctime)s  %(levelname)-8s  %(message)s", datefmt="%Y-%m-%d  %H:%M:%S"
    )
    formatter.converter = time.gmtime
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.addHandler(handler)
    root.setLevel(level)


def main():
    setup_logging()
    result = run_check(load_config())
    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
