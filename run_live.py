# run_live.py
import json

import boto3
from botocore.exceptions import ClientError
from dotenv import load_dotenv

# Load .env before the settings are built
load_dotenv()

from lambdas.ingest_transcripts.app import get_dependencies, handler
from lambdas.ingest_transcripts.models import get_settings


def ensure_table(dynamodb, table_name: str, key_name: str):
    """Creates a single-key DynamoDB table if it does not exist yet."""
    try:
        dynamodb.meta.client.describe_table(TableName=table_name)
        print(f"DynamoDB table '{table_name}' already exists.")
    except ClientError as e:
        if e.response['Error']['Code'] != 'ResourceNotFoundException':
            raise
        print(f"DynamoDB table '{table_name}' not found. Creating it now...")
        dynamodb.create_table(
            TableName=table_name,
            KeySchema=[{'AttributeName': key_name, 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': key_name, 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST',
        )
        dynamodb.Table(table_name).wait_until_exists()
        print(f"Table '{table_name}' created successfully.")


def setup_dynamodb_tables():
    """Checks for and creates the transcript and user interest tables."""
    settings = get_settings()
    dynamodb = boto3.resource('dynamodb', region_name=settings.aws_region)
    ensure_table(dynamodb, settings.transcripts_table_name, 'call_id')
    ensure_table(dynamodb, settings.user_interests_table_name, 'email')


def run_live(from_datetime: str | None = None, to_datetime: str | None = None):
    """Executes the ingest_transcripts handler using your live credentials."""
    print("--- Starting LIVE Run of ingest_transcripts Lambda ---")

    try:
        setup_dynamodb_tables()
    except Exception as e:
        print(f"Could not complete setup. Aborting run. Error: {e}")
        return

    query = {}
    if from_datetime:
        query['fromDateTime'] = from_datetime
    if to_datetime:
        query['toDateTime'] = to_datetime
    event = {"queryStringParameters": query or None}

    print("\n--- Invoking Lambda handler (this will call Gong, DynamoDB, OpenAI and Slack) ---")
    result = handler(event, {}, deps=get_dependencies())
    print("--- Lambda handler execution finished ---")

    print(f"\n--- Final JSON Output from Lambda (HTTP {result['statusCode']}): ---")
    print(json.dumps(json.loads(result['body']), indent=2))


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Run the transcript ingestion pipeline locally.")
    parser.add_argument("--from", dest="from_datetime", help="ISO-8601 start, e.g. 2024-05-01T00:00:00-07:00")
    parser.add_argument("--to", dest="to_datetime", help="ISO-8601 end, e.g. 2024-05-31T23:59:59-07:00")
    args = parser.parse_args()
    run_live(args.from_datetime, args.to_datetime)
