"""Compile proto files into descriptors and encode/decode generic messages."""

from enum import Enum
import glob
from importlib import resources
import logging
import os
import tempfile
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from google.protobuf import descriptor_pb2, descriptor_pool, json_format
from google.protobuf.descriptor import MethodDescriptor, ServiceDescriptor
from google.protobuf.message import DecodeError
from google.protobuf.message_factory import GetMessageClass
import grpc
from grpc_tools import protoc

from grpc_stub.exceptions import DecodeFailure, EncodeFailure, SchemaError
from grpc_stub.message import Message

logger = logging.getLogger(__name__)

# google/protobuf/*.proto shipped with grpcio-tools.
_WELL_KNOWN_PROTOS = str(resources.files("grpc_tools") / "_proto")


class CallShape(Enum):
    """The request/response cardinality of a method.

    The value is (request_streaming, response_streaming).
    """

    UNARY_UNARY = (False, False)
    UNARY_STREAM = (False, True)
    STREAM_UNARY = (True, False)
    STREAM_STREAM = (True, True)

    @classmethod
    def of(cls, method: MethodDescriptor) -> "CallShape":
        return cls((method.client_streaming, method.server_streaming))

    @property
    def request_streaming(self) -> bool:
        return self.value[0]

    @property
    def response_streaming(self) -> bool:
        return self.value[1]

    def rpc_method_handler(self, behavior: Callable, **kwargs) -> grpc.RpcMethodHandler:
        """Wrap behavior in the grpc.RpcMethodHandler for this shape."""
        factory = {
            CallShape.UNARY_UNARY: grpc.unary_unary_rpc_method_handler,
            CallShape.UNARY_STREAM: grpc.unary_stream_rpc_method_handler,
            CallShape.STREAM_UNARY: grpc.stream_unary_rpc_method_handler,
            CallShape.STREAM_STREAM: grpc.stream_stream_rpc_method_handler,
        }[self]
        return factory(behavior, **kwargs)


class MethodCodec:
    """Converts between wire bytes and generic messages for one method.

    Decoded messages use the proto field names verbatim, represent enums by their
    number and include every field, populated or not, so matchers can rely on keys
    being present.

    Args:
        method: The method descriptor, from a DescriptorRegistry.
    """

    def __init__(self, method: MethodDescriptor):
        self.descriptor = method
        self.full_name = method.full_name
        self.name = method.name
        self.service_name = method.containing_service.full_name
        self.path = f"/{self.service_name}/{self.name}"
        self.shape = CallShape.of(method)
        self.input_class = GetMessageClass(method.input_type)
        self.output_class = GetMessageClass(method.output_type)

    def __repr__(self) -> str:
        return f"MethodCodec({self.path!r}, shape={self.shape.name})"

    def decode(self, data: bytes) -> Message:
        """Decode a received request into a generic message.

        Raises:
            DecodeFailure: If data is not a valid encoding of the input message.
        """
        try:
            message = self.input_class.FromString(data)
        except DecodeError as ex:
            raise DecodeFailure(
                f"Failed to decode {self.descriptor.input_type.full_name}: {ex}"
            ) from ex
        return json_format.MessageToDict(
            message,
            preserving_proto_field_name=True,
            use_integers_for_enums=True,
            always_print_fields_with_no_presence=True,
        )

    def encode(self, document: Optional[Message]) -> bytes:
        """Encode a generic message as the method's output message.

        Fields missing from document keep their default values, and an empty or None
        document encodes the default message.

        Raises:
            EncodeFailure: If document does not fit the output message.
        """
        message = self.output_class()
        if document:
            try:
                json_format.ParseDict(document, message)
            except json_format.ParseError as ex:
                raise EncodeFailure(
                    f"Failed to encode {self.descriptor.output_type.full_name}: {ex}"
                ) from ex
        return message.SerializeToString()


class DescriptorRegistry:
    """A caller-owned set of descriptors compiled from proto files.

    Descriptors are added to a private DescriptorPool rather than the process-wide
    default pool, so independent stub servers never clash over the same names.
    Loading the same file twice is a no-op, and a file defining a symbol that is
    already registered from another file is skipped with a warning.

    Args:
        pool: The pool to add descriptors to. A fresh pool is created if None.
    """

    def __init__(self, pool: Optional[descriptor_pool.DescriptorPool] = None):
        self.pool = pool if pool is not None else descriptor_pool.DescriptorPool()
        self._files: List[str] = []

    def load(
        self, protos: Union[str, Sequence[str]], import_paths: Iterable[str] = ()
    ) -> List[str]:
        """Compile proto files and add them to the pool.

        Args:
            protos: Proto file paths. Glob patterns (including "**") are expanded.
            import_paths: Directories to search for imported files. The directory of
                each proto file is searched too.

        Returns:
            The names of all files in the compiled set, imports included.

        Raises:
            SchemaError: If no file matches, or protoc fails.
        """
        if isinstance(protos, str):
            protos = [protos]
        paths, names = _resolve_paths(list(import_paths), _expand_globs(protos))
        file_set = _compile(paths, names)

        loaded = []
        for file_proto in file_set.file:
            if self._add_file(file_proto) and file_proto.name not in self._files:
                self._files.append(file_proto.name)
            loaded.append(file_proto.name)
        return loaded

    def _add_file(self, file_proto: descriptor_pb2.FileDescriptorProto) -> bool:
        try:
            self.pool.FindFileByName(file_proto.name)
            return True
        except KeyError:
            pass

        for symbol in _top_level_symbols(file_proto):
            try:
                existing = self.pool.FindFileContainingSymbol(symbol)
            except KeyError:
                continue
            logger.warning(
                "Skipping %s: %s is already registered by %s",
                file_proto.name,
                symbol,
                existing.name,
            )
            return False

        try:
            self.pool.AddSerializedFile(file_proto.SerializeToString())
        except TypeError as ex:
            logger.warning("Skipping %s: %s", file_proto.name, ex)
            return False
        return True

    def services(self) -> List[ServiceDescriptor]:
        """All services defined in loaded files, in load order."""
        services: Dict[str, ServiceDescriptor] = {}
        for name in self._files:
            for service in self.pool.FindFileByName(name).services_by_name.values():
                services.setdefault(service.full_name, service)
        return list(services.values())

    def methods(self) -> List[MethodCodec]:
        """Codecs for every method of every loaded service."""
        return [
            MethodCodec(method)
            for service in self.services()
            for method in service.methods
        ]

    def method(self, name: str) -> MethodCodec:
        """Look up a method by "pkg.Service.Method" or "/pkg.Service/Method".

        Raises:
            KeyError: If the method is unknown.
        """
        if name.startswith("/"):
            name = name[1:].replace("/", ".")
        service_name, _, method_name = name.rpartition(".")
        service = self.pool.FindServiceByName(service_name)
        method = service.methods_by_name.get(method_name)
        if method is None:
            raise KeyError(f"Unknown method: {name}")
        return MethodCodec(method)

    def message_class(self, full_name: str) -> type:
        """The dynamic message class for a message, e.g. "routeguide.Point"."""
        return GetMessageClass(self.pool.FindMessageTypeByName(full_name))


def _expand_globs(protos: Iterable[str]) -> List[str]:
    files = []
    for proto in protos:
        if any(c in proto for c in "*?["):
            matches = sorted(glob.glob(proto, recursive=True))
            if not matches:
                raise SchemaError(f"No proto files match {proto!r}")
            files.extend(matches)
        elif not os.path.isfile(proto):
            raise SchemaError(f"Proto file not found: {proto!r}")
        else:
            files.append(proto)
    return files


def _resolve_paths(
    import_paths: List[str], files: List[str]
) -> Tuple[List[str], List[str]]:
    """Name each file relative to an import path, adding its directory if needed."""
    paths = [os.path.abspath(p) for p in import_paths]
    names = []
    for f in files:
        f = os.path.abspath(f)
        for path in paths:
            if os.path.commonpath([path, f]) == path:
                names.append(os.path.relpath(f, path).replace(os.sep, "/"))
                break
        else:
            directory, basename = os.path.split(f)
            paths.append(directory)
            names.append(basename)
    return _unique(paths), _unique(names)


def _compile(
    import_paths: List[str], names: List[str]
) -> descriptor_pb2.FileDescriptorSet:
    with tempfile.TemporaryDirectory() as tmp:
        out = os.path.join(tmp, "descriptor_set.pb")
        args = [
            "grpc_tools.protoc",
            *(f"--proto_path={path}" for path in import_paths),
            f"--proto_path={_WELL_KNOWN_PROTOS}",
            f"--descriptor_set_out={out}",
            "--include_imports",
            *names,
        ]
        logger.debug("Running %s", " ".join(args))
        if protoc.main(args) != 0:
            raise SchemaError(f"protoc failed to compile {', '.join(names)}")
        with open(out, "rb") as f:
            return descriptor_pb2.FileDescriptorSet.FromString(f.read())


def _top_level_symbols(file_proto: descriptor_pb2.FileDescriptorProto) -> List[str]:
    prefix = f"{file_proto.package}." if file_proto.package else ""
    names = [m.name for m in file_proto.message_type]
    names += [e.name for e in file_proto.enum_type]
    names += [x.name for x in file_proto.extension]
    names += [s.name for s in file_proto.service]
    return [prefix + name for name in names]


def _unique(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))
