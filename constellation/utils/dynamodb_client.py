"""
Amazon DynamoDB client wrapper for the single-table record store.
"""

import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import DynamoDBConfig
from .logging_config import get_logger

logger = get_logger(__name__)

BATCH_GET_LIMIT = 100
BATCH_GET_MAX_ROUNDS = 5


class DynamoDBError(Exception):
    """Custom exception for DynamoDB errors."""
    pass


class DynamoDBConflictError(DynamoDBError):
    """A conditional write lost against a concurrent writer."""
    pass


class DynamoDBClient:
    """Record store keyed by (PK, SK) on a single DynamoDB table."""

    def __init__(self, config: DynamoDBConfig, table: Optional[Any] = None):
        """
        Initialize DynamoDB client.

        Args:
            config: DynamoDBConfig instance with connection parameters
            table: Pre-built boto3 Table resource
        """
        self.config = config
        self.table_name = config.table_name

        if table is not None:
            self.table = table
        else:
            resource = boto3.resource('dynamodb',
                                      region_name=config.region,
                                      endpoint_url=config.endpoint_url,
                                      config=BotoConfig(connect_timeout=config.connect_timeout,
                                                        read_timeout=config.read_timeout,
                                                        retries={'max_attempts': 3}))
            self.table = resource.Table(config.table_name)

        logger.info(f'Initialized DynamoDB client for table: {self.table_name}')

    def put_item(self, item: Dict[str, Any]) -> None:
        """
        Write an item, replacing any existing item with the same key.

        Raises:
            DynamoDBError: If the write fails
        """
        try:
            self.table.put_item(Item=item)
            logger.debug(f'Saved record {item["PK"]} / {item["SK"]}')
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error saving record {item.get("PK")} / {item.get("SK")}: {e}')
            raise DynamoDBError(f'Could not save record: {e}') from e

    def put_item_if_version(self, item: Dict[str, Any], expected_version: Optional[int]) -> None:
        """
        Write an item only if the stored `version` still equals `expected_version`.

        Args:
            item: Item to write (should carry its new version)
            expected_version: Version read before the update, or None if the item did not exist

        Raises:
            DynamoDBConflictError: If another writer got there first
            DynamoDBError: If the write fails for any other reason
        """
        if expected_version is None:
            condition = Attr('PK').not_exists()
        elif expected_version == 0:
            # Items written before versioning carry no version attribute
            condition = Attr('version').not_exists() | Attr('version').eq(0)
        else:
            condition = Attr('version').eq(expected_version)

        try:
            self.table.put_item(Item=item, ConditionExpression=condition)
            logger.debug(f'Saved versioned record {item["PK"]} / {item["SK"]} (v{item.get("version")})')
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                logger.warning(f'Version conflict on {item["PK"]} (expected v{expected_version})')
                raise DynamoDBConflictError(f'Version conflict on {item["PK"]}') from e
            logger.error(f'Error saving versioned record {item.get("PK")}: {e}')
            raise DynamoDBError(f'Could not save record: {e}') from e
        except BotoCoreError as e:
            logger.error(f'Error saving versioned record {item.get("PK")}: {e}')
            raise DynamoDBError(f'Could not save record: {e}') from e

    def get_item(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve one item by key.

        Returns:
            The item, or None if not found
        """
        try:
            response = self.table.get_item(Key={'PK': pk, 'SK': sk})
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error retrieving record {pk} / {sk}: {e}')
            raise DynamoDBError(f'Could not retrieve record: {e}') from e
        return response.get('Item')

    def query(self,
              pk: str,
              sk_prefix: Optional[str] = None,
              sk_from: Optional[str] = None,
              limit: Optional[int] = None,
              newest_first: bool = False,
              filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Query items of one partition.

        Args:
            pk: Partition key
            sk_prefix: Only sort keys starting with this prefix
            sk_from: Only sort keys >= this value (range scan)
            limit: Maximum number of items to read
            newest_first: Descending sort-key order
            filters: Attribute equality filters applied after the key condition

        Returns:
            Matching items
        """
        condition = Key('PK').eq(pk)
        if sk_from is not None:
            condition = condition & Key('SK').gte(sk_from)
        elif sk_prefix is not None:
            condition = condition & Key('SK').begins_with(sk_prefix)

        kwargs: Dict[str, Any] = {'KeyConditionExpression': condition, 'ScanIndexForward': not newest_first}
        if filters:
            filter_expression = None
            for name, value in filters.items():
                clause = Attr(name).eq(value)
                filter_expression = clause if filter_expression is None else filter_expression & clause
            kwargs['FilterExpression'] = filter_expression

        items: List[Dict[str, Any]] = []
        try:
            while True:
                if limit is not None:
                    kwargs['Limit'] = limit - len(items)
                response = self.table.query(**kwargs)
                items.extend(response.get('Items', []))
                last_key = response.get('LastEvaluatedKey')
                if not last_key or (limit is not None and len(items) >= limit):
                    break
                kwargs['ExclusiveStartKey'] = last_key
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error querying partition {pk}: {e}')
            raise DynamoDBError(f'Could not query records: {e}') from e

        # sk_from and sk_prefix may both be set; the prefix is then enforced here
        if sk_from is not None and sk_prefix is not None:
            items = [item for item in items if item.get('SK', '').startswith(sk_prefix)]

        logger.debug(f'Query on {pk} returned {len(items)} items')
        return items

    def batch_get(self, keys: Sequence[Tuple[str, str]]) -> List[Dict[str, Any]]:
        """
        Fetch many items by key. Missing items are simply absent from the result.

        Args:
            keys: (PK, SK) pairs

        Returns:
            Found items, in no particular order
        """
        if not keys:
            return []

        client = self.table.meta.client
        found: List[Dict[str, Any]] = []
        unique_keys = list(dict.fromkeys(keys))

        for start in range(0, len(unique_keys), BATCH_GET_LIMIT):
            chunk = unique_keys[start:start + BATCH_GET_LIMIT]
            request = {self.table_name: {'Keys': [{'PK': pk, 'SK': sk} for pk, sk in chunk]}}
            try:
                for round_number in range(BATCH_GET_MAX_ROUNDS):
                    response = client.batch_get_item(RequestItems=request)
                    found.extend(response.get('Responses', {}).get(self.table_name, []))
                    request = response.get('UnprocessedKeys') or {}
                    if not request:
                        break
                    time.sleep(0.1 * (2**round_number))
                else:
                    logger.warning(f'Batch get left {len(request[self.table_name]["Keys"])} keys unprocessed')
            except (ClientError, BotoCoreError) as e:
                logger.error(f'Error batch-fetching {len(chunk)} records: {e}')
                raise DynamoDBError(f'Could not batch-fetch records: {e}') from e

        logger.debug(f'Batch get returned {len(found)}/{len(unique_keys)} items')
        return found

    def touch(self, pk: str, sk: str, timestamp: str) -> None:
        """Record a read by updating lastAccessed on an existing item."""
        try:
            self.table.update_item(Key={'PK': pk, 'SK': sk},
                                   UpdateExpression='SET lastAccessed = :ts',
                                   ConditionExpression=Attr('PK').exists(),
                                   ExpressionAttributeValues={':ts': timestamp})
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                logger.debug(f'Skipped lastAccessed update for missing record {pk} / {sk}')
                return
            raise DynamoDBError(f'Could not update lastAccessed: {e}') from e
        except BotoCoreError as e:
            raise DynamoDBError(f'Could not update lastAccessed: {e}') from e

    def health_check(self) -> bool:
        """
        Perform a health check on the DynamoDB table.

        Returns:
            True if the table is reachable and active, False otherwise
        """
        try:
            self.table.load()
            return self.table.table_status in ('ACTIVE', 'UPDATING')
        except Exception as e:
            logger.error(f'DynamoDB health check failed: {e}')
            return False
