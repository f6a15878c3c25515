"""YAML workbook backend.

A local file standing in for the spreadsheet API. It implements both
transport capabilities over a YAML document shaped like the API responses::

    config:
      query_timeout: 10
    recurringTransactions:
      - id: rent
        payee: Landlord
        ...
    transactions:
      - date: 2026-02-01
        ...

Writes behave like the spreadsheet script: a command that cannot be applied
(unknown row, unknown rule) is logged and dropped, not reported back.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from . import constants
from .transport import TransportError
from .types import Operation, QueryAction

logger = logging.getLogger(__name__)

QUERY_DATASETS = {
    QueryAction.GET_RECURRING: constants.DATASET_RECURRING,
    QueryAction.GET_TRANSACTIONS: constants.DATASET_TRANSACTIONS,
}


class WorkbookBackend:
    """Query and command transport backed by a YAML workbook file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        try:
            with self.path.open() as f:
                document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise TransportError(f"Unreadable workbook {self.path}: {e}") from e

        if document is None:
            return {}
        if not isinstance(document, dict):
            raise TransportError(f"Workbook {self.path} is not a mapping")
        return document

    def _save(self, document: dict[str, Any]) -> None:
        with self.path.open("w") as f:
            yaml.safe_dump(document, f, sort_keys=False, allow_unicode=True)

    async def query(self, action: QueryAction) -> dict[str, Any]:
        dataset = QUERY_DATASETS.get(QueryAction(action))
        if dataset is None:
            raise TransportError(f"Unsupported action: {action}")
        return {dataset: list(self._load().get(dataset) or [])}

    async def send(self, payload: dict[str, Any]) -> None:
        fields = dict(payload)
        try:
            operation = Operation(fields.pop("operation"))
        except (KeyError, ValueError):
            logger.warning("Ignoring command without a valid operation: %s", payload)
            return

        document = self._load()
        rows = document.setdefault(constants.DATASET_TRANSACTIONS, []) or []
        rules = document.setdefault(constants.DATASET_RECURRING, []) or []
        document[constants.DATASET_TRANSACTIONS] = rows
        document[constants.DATASET_RECURRING] = rules

        if operation == Operation.ADD:
            rows.append(fields)
        elif operation in (Operation.UPDATE, Operation.DELETE):
            row_index = fields.pop("rowIndex", None)
            if not isinstance(row_index, int) or not 1 <= row_index <= len(rows):
                logger.warning("Ignoring %s for unknown row %s", operation.value, row_index)
                return
            if operation == Operation.UPDATE:
                rows[row_index - 1] = {**rows[row_index - 1], **fields}
            else:
                del rows[row_index - 1]
        elif operation == Operation.ADD_RECURRING:
            rules.append({"id": fields.pop("recurringId"), **fields})
        else:
            rule_id = str(fields.pop("recurringId", ""))
            position = next(
                (i for i, rule in enumerate(rules) if str(rule.get("id")) == rule_id), None
            )
            if position is None:
                logger.warning("Ignoring %s for unknown rule %s", operation.value, rule_id)
                return
            if operation == Operation.UPDATE_RECURRING:
                rules[position] = {**rules[position], **fields}
            else:
                del rules[position]

        self._save(document)
        logger.debug("Applied %s to %s", operation.value, self.path)
