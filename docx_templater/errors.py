"""Error taxonomy surfaced by parsing, rendering and saving templates."""
from __future__ import annotations

from enum import Enum
from typing import List, Optional


class ErrorCode(str, Enum):
    """Programmatic category of a :class:`TemplateError`."""

    CORRUPT_CONTAINER = "CORRUPT_CONTAINER"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    READ_ERROR = "READ_ERROR"
    SYNTAX_ERROR = "SYNTAX_ERROR"
    UNCLOSED_TAG = "UNCLOSED_TAG"
    UNMATCHED_END = "UNMATCHED_END"
    UNDEFINED_FIELD = "UNDEFINED_FIELD"
    INVALID_FUNCTION = "INVALID_FUNCTION"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    DATA_CONVERSION = "DATA_CONVERSION"
    IMAGE_ERROR = "IMAGE_ERROR"
    WRITE_ERROR = "WRITE_ERROR"


class TemplateError(Exception):
    """Base error carrying where and why template processing failed."""

    code: ErrorCode = ErrorCode.EXECUTION_ERROR

    def __init__(
        self,
        message: str,
        *,
        location: Optional[str] = None,
        placeholder: Optional[str] = None,
        line_number: Optional[int] = None,
        cause: Optional[BaseException] = None,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.placeholder = placeholder
        self.line_number = line_number
        self.cause = cause
        self.suggestions: List[str] = list(suggestions or [])
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts: List[str] = []
        if self.location:
            parts.append(f"[{self.location}]")
        parts.append(self.message)
        if self.placeholder:
            parts.append(f"(at: {self.placeholder})")
        if self.line_number:
            parts.append(f"(line {self.line_number})")
        return " ".join(parts)

    def describe(self) -> str:
        """Return a multi-line report including cause and suggestions."""
        lines = [
            "Template Error",
            "==============",
            f"Code:     {self.code.value}",
            f"Message:  {self.message}",
        ]
        if self.location:
            lines.append(f"Location: {self.location}")
        if self.placeholder:
            lines.append(f"Tag:      {self.placeholder}")
        if self.line_number:
            lines.append(f"Line:     {self.line_number}")
        if self.cause is not None:
            lines.append(f"Cause:    {self.cause}")
        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            lines.extend(f"  {index}. {text}" for index, text in enumerate(self.suggestions, 1))
        return "\n".join(lines) + "\n"

    def with_location(self, location: str) -> "TemplateError":
        self.location = location
        return self

    def with_placeholder(self, placeholder: str) -> "TemplateError":
        self.placeholder = placeholder
        return self

    def with_cause(self, cause: BaseException) -> "TemplateError":
        self.cause = cause
        self.__cause__ = cause
        return self

    def with_suggestions(self, *suggestions: str) -> "TemplateError":
        self.suggestions.extend(suggestions)
        return self


class CorruptContainerError(TemplateError):
    code = ErrorCode.CORRUPT_CONTAINER


class ReadError(TemplateError):
    code = ErrorCode.READ_ERROR


class TemplateSyntaxError(TemplateError):
    code = ErrorCode.SYNTAX_ERROR


class UnclosedTagError(TemplateError):
    code = ErrorCode.UNCLOSED_TAG


class UnmatchedEndError(TemplateError):
    code = ErrorCode.UNMATCHED_END


class UndefinedFieldError(TemplateError):
    code = ErrorCode.UNDEFINED_FIELD


class InvalidFunctionError(TemplateError):
    code = ErrorCode.INVALID_FUNCTION


class ExecutionError(TemplateError):
    code = ErrorCode.EXECUTION_ERROR


class DataConversionError(TemplateError):
    code = ErrorCode.DATA_CONVERSION


class ImageError(TemplateError):
    code = ErrorCode.IMAGE_ERROR


class WriteError(TemplateError):
    code = ErrorCode.WRITE_ERROR


class ErrorSummary:
    """Collects several template errors, e.g. from a validation pass."""

    def __init__(self) -> None:
        self.errors: List[TemplateError] = []

    def add(self, error: TemplateError) -> None:
        self.errors.append(error)

    def has_errors(self) -> bool:
        return bool(self.errors)

    def by_code(self, code: ErrorCode) -> List[TemplateError]:
        return [error for error in self.errors if error.code == code]

    def by_location(self, location: str) -> List[TemplateError]:
        return [error for error in self.errors if error.location == location]

    def __str__(self) -> str:
        if not self.errors:
            return "no errors"
        if len(self.errors) == 1:
            return str(self.errors[0])
        return f"{len(self.errors)} errors occurred (first: {self.errors[0]})"

    def describe(self) -> str:
        if not self.errors:
            return "No errors"
        chunks = [f"Found {len(self.errors)} error(s):\n"]
        for index, error in enumerate(self.errors, 1):
            chunks.append(f"--- Error {index} ---\n{error.describe()}")
        return "\n".join(chunks)


# ----------------------------------------------------------------------
# Convenience constructors


def syntax_error(message: str, placeholder: Optional[str] = None) -> TemplateSyntaxError:
    return TemplateSyntaxError(
        message,
        placeholder=placeholder,
        suggestions=[
            "Check that all template tags use {{ and }} delimiters",
            "Verify function names and arguments are correct",
            "Ensure all strings are properly quoted",
        ],
    )


def unclosed_tag(location: Optional[str] = None, placeholder: Optional[str] = None) -> UnclosedTagError:
    return UnclosedTagError(
        "found {{ without matching }}",
        location=location,
        placeholder=placeholder,
        suggestions=[
            "Check for missing }} in template tags",
            "Ensure tag delimiters are not split across paragraphs",
        ],
    )


def unmatched_end(placeholder: str, location: Optional[str] = None) -> UnmatchedEndError:
    return UnmatchedEndError(
        "closing delimiter or {{end}} without matching start",
        location=location,
        placeholder=placeholder,
        suggestions=[
            "Ensure every {{end}} has a matching {{if}}, {{range}} or {{with}}",
            "Check for extra }} or {{end}} tags",
        ],
    )


def undefined_field(field: str, location: Optional[str] = None) -> UndefinedFieldError:
    return UndefinedFieldError(
        f"field {field!r} not found in template data",
        location=location,
        placeholder="{{." + field + "}}",
        suggestions=[
            f"Add a {field!r} field to your data",
            "Check for typos in the field name",
            "Ensure nested fields use proper dot notation (e.g., .Parent.Child)",
        ],
    )


def invalid_function(name: str, placeholder: Optional[str] = None) -> InvalidFunctionError:
    return InvalidFunctionError(
        f"function {name!r} is not defined",
        placeholder=placeholder,
        suggestions=[
            f"Register the function using doc.register_function({name!r}, fn)",
            "Check for typos in the function name",
        ],
    )


def image_load_error(path: str, cause: Optional[BaseException] = None) -> ImageError:
    return ImageError(
        f"failed to load image: {path}",
        cause=cause,
        suggestions=[
            "Verify the file path is correct",
            "Ensure the file exists and is readable",
            "Check that the image is a valid JPEG or PNG file",
        ],
    )


def file_parse_error(filename: str, cause: Optional[BaseException] = None) -> CorruptContainerError:
    return CorruptContainerError(
        f"failed to parse DOCX file: {filename}",
        cause=cause,
        suggestions=[
            "Verify the file is a valid DOCX document",
            "Try opening and re-saving the file in Word",
            "Check if the file is corrupted or incomplete",
        ],
    )


def file_not_found(path: str, cause: Optional[BaseException] = None) -> ReadError:
    error = ReadError(
        f"template not found: {path}",
        cause=cause,
        suggestions=["Check the template path and the working directory"],
    )
    error.code = ErrorCode.FILE_NOT_FOUND
    return error
