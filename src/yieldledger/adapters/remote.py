"""REST client adapter for strategy backends running as a separate service."""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from time import sleep
from typing import Any

import requests

from yieldledger.domain.models import AdapterKind
from yieldledger.errors import AdapterError, TokenError
from yieldledger.tokens import Token


class RemoteStrategyAdapter:
    """JSON adapter wrapper with retry and rate-limit handling.

    Tokens routed to the service are held under the adapter's own custody
    account; the service reports positions and decides how much of a
    withdrawal it releases. Amounts travel as decimal strings so values
    beyond 64 bits survive JSON.
    """

    def __init__(
        self,
        adapter_id: str,
        base_url: str,
        token: Token,
        ledger_account: str,
        kind: AdapterKind | str = AdapterKind.LENDING,
        account: str | None = None,
        api_key: str = "",
        timeout: int = 20,
        max_retries: int = 4,
    ) -> None:
        self.adapter_id = adapter_id
        self.kind = AdapterKind(kind)
        self.token = token
        self.ledger_account = ledger_account
        self.account = account or f"adapter:{adapter_id}"
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    def deposit(self, amount: int) -> None:
        self.token.transfer_from(self.account, self.ledger_account, self.account, amount)
        try:
            self._request("POST", "/deposit", json={"amount": str(amount)})
        except AdapterError:
            self.token.transfer(self.account, self.ledger_account, amount)
            raise

    def withdraw(self, amount: int) -> int:
        payload = self._request("POST", "/withdraw", json={"amount": str(amount)})
        returned = self._parse_amount(payload, "returned", "/withdraw")
        if returned > amount:
            raise AdapterError(
                f"Adapter {self.adapter_id} reported returning {returned}, more than {amount}"
            )
        if returned:
            try:
                self.token.transfer(self.account, self.ledger_account, returned)
            except TokenError as exc:
                raise AdapterError(
                    f"Adapter {self.adapter_id} released {returned} "
                    f"but custody holds {self.token.balance_of(self.account)}"
                ) from exc
        return returned

    def total_assets(self) -> int:
        payload = self._request("GET", "/total-assets")
        return self._parse_amount(payload, "total_assets", "/total-assets")

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    json=json,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self.max_retries:
                    break
                sleep(float(attempt))
                continue

            if response.status_code == 429:
                if attempt == self.max_retries:
                    detail = response.text.strip() or "Rate limit"
                    raise AdapterError(f"Adapter API error 429 for {path}: {detail}")
                sleep(self._retry_after_seconds(response.headers, attempt))
                continue

            if response.status_code >= 500:
                if attempt == self.max_retries:
                    detail = response.text.strip() or "Server error"
                    raise AdapterError(
                        f"Adapter API error {response.status_code} for {path}: {detail}"
                    )
                sleep(float(attempt))
                continue

            if response.status_code >= 400:
                detail = response.text.strip() or "Request rejected"
                raise AdapterError(
                    f"Adapter API error {response.status_code} for {path}: {detail}"
                )

            try:
                return response.json()
            except ValueError as exc:
                raise AdapterError(f"Adapter response for {path} was not valid JSON") from exc

        if last_error is not None:
            raise AdapterError(f"Adapter request failed for {path}: {last_error}") from last_error
        raise AdapterError(f"Adapter request failed for {path}")

    @staticmethod
    def _parse_amount(payload: Any, key: str, path: str) -> int:
        if not isinstance(payload, dict) or key not in payload:
            raise AdapterError(f"Adapter response for {path} is missing '{key}'")
        try:
            value = int(str(payload[key]).strip())
        except ValueError as exc:
            raise AdapterError(f"Adapter response for {path} has non-integer '{key}'") from exc
        if value < 0:
            raise AdapterError(f"Adapter response for {path} has negative '{key}'")
        return value

    @staticmethod
    def _retry_after_seconds(
        headers: requests.structures.CaseInsensitiveDict,
        attempt: int,
    ) -> float:
        retry_after = headers.get("Retry-After")
        if retry_after:
            try:
                return max(float(retry_after), 1.0)
            except ValueError:
                try:
                    dt = parsedate_to_datetime(retry_after)
                except (TypeError, ValueError):
                    return max(float(attempt), 1.0)
                if dt.tzinfo is None:
                    dt = dt.replace(tzinfo=UTC)
                delta = (dt - datetime.now(tz=UTC)).total_seconds()
                return max(delta, 1.0)
        return max(float(attempt), 1.0)
