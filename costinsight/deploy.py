"""Provision the CostInsight Lambda functions.

Creates (or reuses) the code bucket, the execution role and its policies,
then creates or updates both functions from the sources under ``lambda/``.
Every step checks before it creates, so re-running is safe; the first failure
aborts the run without rolling anything back.
"""
import io
import json
import os
import sys
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import CostInsightError, DeploymentError

AWS_REGION = "us-east-1"
# bucket names are global; change this before deploying to a new account
S3_BUCKET_NAME = "costinsight-lambda-code-bucket-unique-name"
IAM_ROLE_NAME = "CostInsightLambdaRole"
MANAGED_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
LAMBDA_RUNTIME = "nodejs18.x"
IAM_PROPAGATION_SECONDS = 10

TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}

PERMISSIONS_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Action": [
                "ec2:DescribeInstances",
                "ec2:DescribeRegions",
                "ec2:StopInstances",
                "cloudwatch:GetMetricStatistics",
                "ce:GetCostAndUsage",
                "iam:CreateRole",
                "iam:AttachRolePolicy",
                "iam:GetRole",
            ],
            "Resource": "*",
        },
        {
            "Effect": "Allow",
            "Action": [
                "logs:CreateLogGroup",
                "logs:CreateLogStream",
                "logs:PutLogEvents",
            ],
            "Resource": "arn:aws:logs:*:*:*",
        },
    ],
}


@dataclass(frozen=True)
class LambdaFunction:
    name: str
    source: str
    handler: str
    timeout: int
    memory_size: int

    @property
    def archive_key(self) -> str:
        return f"{self.name}.zip"


FETCHER = LambdaFunction("CostInsight-CloudWatchFetcher", "lambda/cloudwatch-fetcher.js",
                         "cloudwatch-fetcher.handler", timeout=30, memory_size=256)
SHUTDOWN = LambdaFunction("CostInsight-AutoShutdown", "lambda/instance-auto-shutdown.js",
                          "instance-auto-shutdown.handler", timeout=15, memory_size=128)


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def package_source(path: Path) -> bytes:
    """Zip a single file at the archive root, like ``zip -j``."""
    if not path.is_file():
        raise DeploymentError(f"Lambda source not found: {path}")
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.write(path, arcname=path.name)
    return buf.getvalue()


class LambdaDeployer:
    def __init__(self, project_root: Path, s3=None, iam=None, sts=None, lambda_client=None,
                 region: str = AWS_REGION, bucket: str = S3_BUCKET_NAME, role_name: str = IAM_ROLE_NAME,
                 sleep: Optional[Callable[[float], None]] = None):
        self.project_root = project_root
        self.region = region
        self.bucket = bucket
        self.role_name = role_name
        self.policy_name = f"{role_name}Policy"
        self.s3 = s3 or boto3.client("s3", region_name=region)
        self.iam = iam or boto3.client("iam", region_name=region)
        self.sts = sts or boto3.client("sts", region_name=region)
        self.lambda_client = lambda_client or boto3.client("lambda", region_name=region)
        self.sleep = sleep or time.sleep
        self.role_arn: Optional[str] = None

    def _say(self, message: str):
        print(message, flush=True)

    # 1
    def ensure_bucket(self) -> bool:
        self._say(f"Step 1/6: Creating S3 bucket '{self.bucket}'...")
        try:
            self.s3.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            if _error_code(e) not in ("404", "NoSuchBucket"):
                # 403 and friends: the name is taken, treat it as present
                self._say(f"S3 bucket '{self.bucket}' already exists. Skipping creation.")
                return False
            kwargs = {"Bucket": self.bucket}
            if self.region != "us-east-1":
                kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
            self.s3.create_bucket(**kwargs)
            self._say("S3 bucket created successfully.")
            return True
        self._say(f"S3 bucket '{self.bucket}' already exists. Skipping creation.")
        return False

    def _role_has_policy(self, policy_arn: str) -> bool:
        attached = self.iam.list_attached_role_policies(RoleName=self.role_name).get("AttachedPolicies", [])
        return any(p.get("PolicyArn") == policy_arn for p in attached)

    def _attach(self, policy_arn: str, label: str):
        if self._role_has_policy(policy_arn):
            self._say(f"{label} policy already attached.")
        else:
            self._say(f"Attaching {label} policy...")
            self.iam.attach_role_policy(RoleName=self.role_name, PolicyArn=policy_arn)

    # 2
    def ensure_role(self) -> str:
        self._say(f"Step 2/6: Creating IAM Role '{self.role_name}'...")
        try:
            self.iam.get_role(RoleName=self.role_name)
            self._say(f"IAM role '{self.role_name}' already exists.")
        except ClientError as e:
            if _error_code(e) != "NoSuchEntity":
                raise
            self.iam.create_role(RoleName=self.role_name, AssumeRolePolicyDocument=json.dumps(TRUST_POLICY))
            self._say(f"IAM role '{self.role_name}' created.")

        self._attach(MANAGED_POLICY_ARN, "AWSLambdaBasicExecutionRole")

        account_id = self.sts.get_caller_identity()["Account"]
        policy_arn = f"arn:aws:iam::{account_id}:policy/{self.policy_name}"
        try:
            self.iam.get_policy(PolicyArn=policy_arn)
            self._say(f"Custom permissions policy '{self.policy_name}' already exists.")
        except ClientError as e:
            if _error_code(e) != "NoSuchEntity":
                raise
            self._say("Creating custom permissions policy...")
            self.iam.create_policy(PolicyName=self.policy_name, PolicyDocument=json.dumps(PERMISSIONS_POLICY))
        self._attach(policy_arn, "Custom permissions")
        self._say("IAM role setup complete.")

        self.role_arn = self.iam.get_role(RoleName=self.role_name)["Role"]["Arn"]
        self._say(f"Role ARN: {self.role_arn}")
        self._say("Waiting for IAM role propagation...")
        self.sleep(IAM_PROPAGATION_SECONDS)
        return self.role_arn

    # 3 / 5
    def upload_code(self, fn: LambdaFunction, step: int):
        self._say(f"Step {step}/6: Packaging and uploading '{fn.name}'...")
        archive = package_source(self.project_root / fn.source)
        self.s3.put_object(Bucket=self.bucket, Key=fn.archive_key, Body=archive)
        self._say(f"'{fn.name}' packaged and uploaded to S3.")

    def _function_exists(self, name: str) -> bool:
        try:
            self.lambda_client.get_function(FunctionName=name)
        except ClientError as e:
            if _error_code(e) != "ResourceNotFoundException":
                raise
            return False
        return True

    # 4 / 6
    def deploy_function(self, fn: LambdaFunction, step: int) -> str:
        self._say(f"Step {step}/6: Creating/Updating Lambda function '{fn.name}'...")
        if self._function_exists(fn.name):
            self._say(f"Function '{fn.name}' already exists. Updating code...")
            self.lambda_client.update_function_code(FunctionName=fn.name, S3Bucket=self.bucket,
                                                    S3Key=fn.archive_key, Publish=True)
            return "updated"
        self._say(f"Creating new function '{fn.name}'...")
        self.lambda_client.create_function(
            FunctionName=fn.name,
            Runtime=LAMBDA_RUNTIME,
            Role=self.role_arn,
            Handler=fn.handler,
            Code={"S3Bucket": self.bucket, "S3Key": fn.archive_key},
            Timeout=fn.timeout,
            MemorySize=fn.memory_size,
            Publish=True,
        )
        return "created"

    def run(self):
        self._say(f"Starting Lambda deployment process from project root: {self.project_root}")
        self.ensure_bucket()
        self.ensure_role()
        self.upload_code(FETCHER, 3)
        self.deploy_function(FETCHER, 4)
        self.upload_code(SHUTDOWN, 5)
        self.deploy_function(SHUTDOWN, 6)
        self._say("=" * 56)
        self._say("Deployment Successful!")
        self._say("=" * 56)
        self._say("Summary:")
        self._say(f" - S3 Bucket: s3://{self.bucket}")
        self._say(f" - IAM Role: {self.role_name}")
        self._say(f" - Lambda Fetcher: {FETCHER.name}")
        self._say(f" - Lambda Shutdown: {SHUTDOWN.name}")
        self._say("Don't forget to configure the function URLs or API Gateway triggers as needed.")
        self._say("Remember to replace the placeholder S3_BUCKET_NAME in costinsight/deploy.py for future runs.")


def main() -> int:
    project_root = Path(os.getenv("COSTINSIGHT_PROJECT_ROOT") or Path.cwd()).resolve()
    try:
        LambdaDeployer(project_root).run()
    except (ClientError, BotoCoreError, CostInsightError) as e:
        print(f"Deployment failed: {e}", file=sys.stderr, flush=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
