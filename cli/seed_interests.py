# cli/seed_interests.py
import argparse
import os

import boto3
from botocore.exceptions import ClientError
from dotenv import load_dotenv

# Load environment variables from a .env file for local testing
load_dotenv()


def build_interest_item(email: str, interests: list[str], webhook_url: str | None = None) -> dict:
    """
    Creates the DynamoDB item for one user's interests.
    Blank and repeated interests are removed.
    """
    email = email.strip()
    if not email:
        raise ValueError("email cannot be empty.")

    cleaned = []
    for interest in interests:
        interest = interest.strip()
        if interest and interest.casefold() not in {i.casefold() for i in cleaned}:
            cleaned.append(interest)

    item = {"email": email, "interests": cleaned}
    if webhook_url:
        item["webhook_url"] = webhook_url.strip()
    return item


def put_interest_item(table, item: dict) -> bool:
    try:
        table.put_item(Item=item)
    except ClientError as e:
        print(f"❌ Failed to save interests for {item['email']}: {e.response['Error']['Message']}")
        return False
    print(f"✅ Saved {len(item['interests'])} interest(s) for {item['email']}.")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Store a user's interest keywords.")
    parser.add_argument("email")
    parser.add_argument("interests", help="Comma-separated keywords, e.g. 'pricing,security review'")
    parser.add_argument("--webhook-url", help="Slack webhook for this user (defaults to SLACK_WEBHOOK_URL)")
    args = parser.parse_args()

    table_name = os.environ.get("USER_INTERESTS_TABLE_NAME", "UserInterests")
    region = os.environ.get("AWS_REGION", "us-east-1")
    table = boto3.resource("dynamodb", region_name=region).Table(table_name)

    put_interest_item(table, build_interest_item(args.email, args.interests.split(","), args.webhook_url))
