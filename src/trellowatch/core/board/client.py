"""
Trello REST client for card management.

Wraps the subset of the Trello API that the watch-sync loop needs: list the
cards of a list, create, rename and delete a card. Transient failures are
retried with capped exponential backoff before a :class:`BoardError`
reaches the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from trellowatch.core.board.http import BackoffPolicy, with_retry
from trellowatch.core.board.models import Card
from trellowatch.core.errors import BoardError
from trellowatch.core.models import Credentials

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.trello.com/1"


class BoardClient(Protocol):
    """Operations the watch-sync loop performs against a board."""

    def list_cards(self, list_id: str) -> list[Card]:
        ...

    def create_card(self, card: Card) -> Card:
        ...

    def update_card(self, card_id: str, name: str) -> None:
        ...

    def delete_card(self, card_id: str) -> None:
        ...

    def close(self) -> None:
        ...


class TrelloClient:
    """
    Client for the Trello REST API.

    Authenticates with an API key and token passed as query parameters.

    Example:
        >>> client = TrelloClient(credentials)
        >>> for card in client.list_cards("5f1c..."):
        ...     print(card.name)
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        retry_max: int = 4,
        retry_wait_min: float = 2.0,
        retry_wait_max: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Initialize TrelloClient.

        Args:
            credentials: Trello API key and token
            base_url: API root
            timeout: Per-request timeout in seconds
            retry_max: Retries after the first attempt
            retry_wait_min: First backoff delay in seconds
            retry_wait_max: Maximum backoff delay in seconds
            transport: Optional httpx transport (tests)
        """
        self._http = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            params={
                "key": credentials.api_key.get_secret_value(),
                "token": credentials.api_token.get_secret_value(),
            },
            headers={"Accept": "application/json"},
            transport=transport,
        )
        policy = BackoffPolicy(
            max_retries=retry_max,
            min_delay=retry_wait_min,
            max_delay=max(retry_wait_min, retry_wait_max),
        )
        self._send = with_retry(policy)(self._send_once)

    def _send_once(self, method: str, path: str, params: dict[str, Any] | None) -> httpx.Response:
        response = self._http.request(method, path, params=params)
        response.raise_for_status()
        return response

    def _request(
        self, method: str, path: str, action: str, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        try:
            return self._send(method, path, params)
        except httpx.HTTPStatusError as e:
            raise BoardError(
                f"{action}: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                path=path,
            ) from e
        except httpx.HTTPError as e:
            raise BoardError(f"{action}: {e}", path=path) from e

    def list_cards(self, list_id: str) -> list[Card]:
        """
        Fetch all open cards on a list, in board order.

        Raises:
            BoardError: If the list cannot be read
        """
        response = self._request(
            "GET",
            f"/lists/{list_id}/cards",
            "unable to fetch Trello cards from list",
            params={"fields": "id,name,idList"},
        )
        try:
            return [Card.from_api(item) for item in response.json()]
        except ValueError as e:
            raise BoardError(f"unable to parse Trello cards: {e}", path=list_id) from e

    def create_card(self, card: Card) -> Card:
        """
        Create ``card`` on its list and return it with the board-assigned id.

        Raises:
            BoardError: If the card could not be created
        """
        response = self._request(
            "POST",
            "/cards",
            "failed to create Trello card",
            params={"idList": card.id_list, "name": card.name},
        )
        try:
            created = Card.from_api(response.json())
        except ValueError as e:
            raise BoardError(f"unable to parse created Trello card: {e}") from e
        if not created.id:
            raise BoardError("Trello did not return an id for the created card")
        return created

    def update_card(self, card_id: str, name: str) -> None:
        """
        Rename a card.

        Raises:
            BoardError: If the card could not be updated
        """
        self._request("PUT", f"/cards/{card_id}", "failed to update Trello card", {"name": name})

    def delete_card(self, card_id: str) -> None:
        """
        Delete a card.

        Raises:
            BoardError: If the card could not be deleted
        """
        self._request("DELETE", f"/cards/{card_id}", "failed to delete Trello card")

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> TrelloClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
