import json
import os


def handler(event, context):
    body = event.get("body") or "{}"
    payload = json.loads(body)
    name = payload.get("name", "world")
    return {
        "statusCode": 200,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps({"message": f"{os.environ.get('GREETING', 'hello')}, {name}"}),
    }
