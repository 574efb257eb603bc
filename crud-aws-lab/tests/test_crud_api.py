# tests/test_crud_api.py
"""Unit tests for the CRUD API Lambda handler."""
import importlib
import importlib.util
import json
import os
from decimal import Decimal
from unittest.mock import patch, MagicMock

import pytest
from botocore.exceptions import ClientError

from crudkit.store import DynamoTableStore

_crud_dir = os.path.join(os.path.dirname(__file__), "..", "app", "lambdas", "crud_api")

mock_table = MagicMock()
mock_ddb_resource = MagicMock()
mock_ddb_resource.Table.return_value = mock_table

with patch.dict(os.environ, {"CRUDKIT_STORE": "dynamodb", "AWS_REGION": "us-east-1", "LOG_LEVEL": "DEBUG"}):
    with patch("boto3.resource", return_value=mock_ddb_resource):
        spec = importlib.util.spec_from_file_location("crud_handler", os.path.join(_crud_dir, "handler.py"))
        crud = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(crud)


def _make_event(operation, payload=None, table_name="lambda-apigateway"):
    return {"operation": operation, "tableName": table_name, "payload": payload or {}}


def _proxy_event(body):
    return {
        "requestContext": {"http": {"method": "POST"}},
        "rawPath": "/DynamoDBManager",
        "body": json.dumps(body) if not isinstance(body, str) else body,
    }


class TestModuleSetup:
    def test_uses_dynamodb_store(self):
        assert isinstance(crud.store, DynamoTableStore)
        assert crud.store.strict_keys is False

    def test_settings_from_environment(self):
        assert crud.settings.region_name == "us-east-1"
        assert crud.settings.log_level == "DEBUG"

    def test_rejects_unknown_log_level(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "foo"}):
            bad_spec = importlib.util.spec_from_file_location("crud_handler_bad", os.path.join(_crud_dir, "handler.py"))
            module = importlib.util.module_from_spec(bad_spec)
            with pytest.raises(ValueError, match="log_level"):
                bad_spec.loader.exec_module(module)


class TestLambdaHandler:
    def setup_method(self):
        mock_table.reset_mock(return_value=True, side_effect=True)
        mock_ddb_resource.Table.reset_mock()

    def test_create(self):
        mock_table.put_item.return_value = {"ResponseMetadata": {"HTTPStatusCode": 200}}
        item = {"id": "1234ABCD", "number": 5}

        result = crud.lambda_handler(_make_event("create", {"Item": item}), None)

        assert result["statusCode"] == 200
        assert result["body"] == "{}"
        assert result["headers"]["Content-Type"] == "application/json"
        mock_ddb_resource.Table.assert_called_with("lambda-apigateway")
        mock_table.put_item.assert_called_once_with(Item=item)

    def test_read(self):
        mock_table.get_item.return_value = {"Item": {"id": "1234ABCD", "number": Decimal("5")}}

        result = crud.lambda_handler(_make_event("read", {"Key": {"id": "1234ABCD"}}), None)

        assert result["statusCode"] == 200
        assert result["body"] == '{"id":"1234ABCD","number":5}'

    def test_update(self):
        mock_table.update_item.return_value = {"Attributes": {"number": Decimal("10.5")}}
        payload = {
            "Key": {"id": "1234ABCD"},
            "UpdateExpression": "SET #n = :n",
            "ExpressionAttributeNames": {"#n": "number"},
            "ExpressionAttributeValues": {":n": 10.5},
            "ReturnValues": "UPDATED_NEW",
        }

        result = crud.lambda_handler(_make_event("update", payload), None)

        assert result["statusCode"] == 200
        assert json.loads(result["body"]) == {"number": 10.5}
        sent = mock_table.update_item.call_args.kwargs["ExpressionAttributeValues"][":n"]
        assert sent == Decimal("10.5")

    def test_delete(self):
        mock_table.delete_item.return_value = {}
        result = crud.lambda_handler(_make_event("delete", {"Key": {"id": "1234ABCD"}}), None)

        assert result["statusCode"] == 200
        mock_table.delete_item.assert_called_once_with(Key={"id": "1234ABCD"})

    def test_list(self):
        mock_table.scan.return_value = {"Items": [{"id": "1"}, {"id": "2"}], "Count": 2, "ScannedCount": 2}
        result = crud.lambda_handler(_make_event("list"), None)
        body = json.loads(result["body"])

        assert result["statusCode"] == 200
        assert body["Count"] == 2
        assert [item["id"] for item in body["Items"]] == ["1", "2"]

    def test_proxy_integration(self):
        mock_table.get_item.return_value = {"Item": {"id": "abc"}}
        result = crud.lambda_handler(_proxy_event(_make_event("read", {"Key": {"id": "abc"}})), None)

        assert result["statusCode"] == 200
        assert json.loads(result["body"]) == {"id": "abc"}

    def test_unrecognized_operation(self):
        result = crud.lambda_handler(_make_event("archive"), None)
        body = json.loads(result["body"])

        assert result["statusCode"] == 500
        assert "archive" in body["message"]
        mock_ddb_resource.Table.assert_not_called()

    def test_backend_failure(self):
        mock_table.get_item.side_effect = ClientError(
            {"Error": {"Code": "ResourceNotFoundException", "Message": "Requested resource not found"}}, "GetItem"
        )
        result = crud.lambda_handler(_make_event("read", {"Key": {"id": "1"}}), None)
        body = json.loads(result["body"])

        assert result["statusCode"] == 500
        assert body["error"] == "BackendFailure"
        assert "Requested resource not found" in body["message"]

    def test_invalid_json_body(self):
        result = crud.lambda_handler(_proxy_event("not-json"), None)
        assert result["statusCode"] == 400

    def test_missing_table_name(self):
        result = crud.lambda_handler({"operation": "list", "payload": {}}, None)
        assert result["statusCode"] == 500
        assert json.loads(result["body"])["error"] == "InvalidRequest"
