import pytest

from room_staging.app.domain.common.enums import ErrorCategory, UploadStage
from room_staging.app.domain.files.errors import (
    AccessFailure,
    FileServiceConfigurationError,
    FileServiceErrorCode,
    UploadDetails,
    UploadFailure,
    ValidationDetail,
    ValidationFailure,
    category_of,
    file_too_large_message,
    invalid_file_type_message,
)


def test_every_code_has_a_category():
    for code in FileServiceErrorCode:
        assert isinstance(category_of(code), ErrorCategory)

    assert category_of(FileServiceErrorCode.MALICIOUS_CONTENT) is ErrorCategory.VALIDATION
    assert category_of(FileServiceErrorCode.STORAGE_FULL) is ErrorCategory.UPLOAD
    assert category_of(FileServiceErrorCode.UNAUTHORIZED) is ErrorCategory.ACCESS
    assert category_of(FileServiceErrorCode.DELETION_FAILED) is ErrorCategory.SYSTEM


def test_failure_types_reject_foreign_codes():
    with pytest.raises(ValueError):
        ValidationFailure(code=FileServiceErrorCode.UPLOAD_FAILED, message="x")
    with pytest.raises(ValueError):
        AccessFailure(code=FileServiceErrorCode.CORRUPTED_FILE, message="x")


def test_validation_failure_to_dict():
    detail = ValidationDetail(
        field="size",
        message=file_too_large_message(10 * 1024 * 1024),
        code=FileServiceErrorCode.FILE_TOO_LARGE,
        constraint="max-size",
        expected=10,
        actual=11,
    )
    failure = ValidationFailure(
        code=FileServiceErrorCode.FILE_TOO_LARGE,
        message=detail.message,
        validation_details=(detail,),
    )

    out = failure.to_dict()
    assert out["success"] is False
    assert out["error"]["code"] == "FILE_TOO_LARGE"
    assert out["error"]["validation"][0]["constraint"] == "max-size"
    assert failure.errors == ["File size exceeds maximum limit of 10.0MB"]
    assert failure.category is ErrorCategory.VALIDATION


def test_upload_failure_retryable_flag():
    failure = UploadFailure(
        code=FileServiceErrorCode.UPLOAD_FAILED,
        message="boom",
        upload_details=UploadDetails(stage=UploadStage.STORAGE, retryable=True),
    )
    assert failure.retryable is True
    assert UploadFailure(code=FileServiceErrorCode.PROCESSING_FAILED, message="x").retryable is False


def test_configuration_error_carries_system_failure():
    err = FileServiceConfigurationError("missing bucket")

    assert str(err) == "missing bucket"
    assert err.failure.code is FileServiceErrorCode.CONFIGURATION_ERROR
    assert err.failure.category is ErrorCategory.SYSTEM


def test_invalid_file_type_message():
    assert invalid_file_type_message(["jpeg", "png"]) == "File type not supported. Allowed types: jpeg, png"
