from __future__ import annotations

import os

import boto3


def _required_env(name: str) -> str:
    v = os.environ.get(name, "").strip()
    if not v:
        raise SystemExit(f"{name} is required")
    return v


def ensure_table(ddb, table_name: str) -> bool:
    """pk/sk の単一テーブルを作る。既にあれば False。"""

    if table_name in ddb.list_tables().get("TableNames", []):
        return False

    ddb.create_table(
        TableName=table_name,
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    ddb.get_waiter("table_exists").wait(TableName=table_name)
    return True


def main() -> None:
    table_name = _required_env("DDB_TABLE_NAME")
    if ensure_table(boto3.client("dynamodb"), table_name):
        print(f"Created pageant table: {table_name}")
    else:
        print(f"Pageant table already exists: {table_name}")


if __name__ == "__main__":
    main()
