"""Language registry - images, source filenames and command generators per language"""

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from sandbox_judge.config import Settings
from sandbox_judge.core.exceptions import UnsupportedLanguageError
from sandbox_judge.schemas.execution import ResourceLimits
from sandbox_judge.schemas.language import Language, parse_language

CompileCommand = Callable[[str, ResourceLimits], List[str]]
RunCommand = Callable[[str, str, ResourceLimits], List[str]]

DEFAULT_IMAGES: Dict[Language, str] = {
    Language.PYTHON: "python:3.11-slim",
    Language.JAVASCRIPT: "node:20-slim",
    Language.C: "gcc:12.2.0",
    Language.CPP: "gcc:12.2.0",
    Language.JAVA: "eclipse-temurin:17-jdk-jammy",
    Language.CSHARP: "mono:6.12",
}

JAVA_PUBLIC_CLASS = re.compile(r"\bpublic\s+(?:final\s+|abstract\s+)*class\s+([A-Za-z_]\w*)")
JAVA_DEFAULT_CLASS = "Main"
_JAVA_ENTROPY_FLAG = "-Djava.security.egd=file:/dev/./urandom"


def java_vm_flags(limits: ResourceLimits) -> List[str]:
    """
    JVM flags tuned for constrained sandboxes.

    Without these, default JVM code cache reservation can exceed the
    memory ceiling and fail before compilation/execution starts.
    """
    limit_mb = max(64, int(limits.memory_mb))
    heap_mb = max(32, min(256, limit_mb // 2))
    code_cache_mb = max(16, min(64, limit_mb // 4))
    initial_heap_mb = max(8, min(32, heap_mb // 4))
    return [
        f"-Xms{initial_heap_mb}m",
        f"-Xmx{heap_mb}m",
        f"-XX:ReservedCodeCacheSize={code_cache_mb}m",
        "-XX:+UseSerialGC",
    ]


def node_vm_flags(limits: ResourceLimits) -> List[str]:
    """
    Node/V8 flags tuned for constrained sandboxes.

    Old-space is capped explicitly so JS memory stays bounded even when
    RLIMIT_AS is not enforced for V8.
    """
    limit_mb = max(64, int(limits.memory_mb))
    old_space_mb = max(32, min(512, int(limit_mb * 0.75)))
    return [f"--max-old-space-size={old_space_mb}"]


def detect_java_class(code: str) -> str:
    match = JAVA_PUBLIC_CLASS.search(code or "")
    return match.group(1) if match else JAVA_DEFAULT_CLASS


@dataclass(frozen=True)
class LanguageSpec:
    """Immutable per-language execution configuration"""

    id: Language
    image: str
    filename: str
    run_command: RunCommand
    compile_command: Optional[CompileCommand] = None
    toolchain: Tuple[str, ...] = ()
    entry_point_detector: Optional[Callable[[str], str]] = None

    @property
    def requires_compilation(self) -> bool:
        return self.compile_command is not None

    def entry_point(self, code: str) -> str:
        if self.entry_point_detector is not None:
            return self.entry_point_detector(code)
        return self.filename.rsplit(".", 1)[0]

    def source_filename(self, code: str) -> str:
        """Source filename for this submission (Java follows its public class)"""
        if self.entry_point_detector is None:
            return self.filename
        extension = self.filename.rsplit(".", 1)[-1]
        return f"{self.entry_point(code)}.{extension}"

    def compile_argv(self, filename: str, limits: ResourceLimits) -> Optional[List[str]]:
        if self.compile_command is None:
            return None
        return self.compile_command(filename, limits)

    def run_argv(self, filename: str, entry: str, limits: ResourceLimits) -> List[str]:
        return self.run_command(filename, entry, limits)


def _default_specs(images: Mapping[str, str]) -> List[LanguageSpec]:
    def image_for(language: Language) -> str:
        return images.get(language.value, DEFAULT_IMAGES[language])

    return [
        LanguageSpec(
            id=Language.PYTHON,
            image=image_for(Language.PYTHON),
            filename="main.py",
            run_command=lambda filename, entry, limits: ["python3", filename],
            toolchain=("python3",),
        ),
        LanguageSpec(
            id=Language.JAVASCRIPT,
            image=image_for(Language.JAVASCRIPT),
            filename="main.js",
            run_command=lambda filename, entry, limits: ["node", *node_vm_flags(limits), filename],
            toolchain=("node",),
        ),
        LanguageSpec(
            id=Language.C,
            image=image_for(Language.C),
            filename="main.c",
            compile_command=lambda filename, limits: [
                "gcc", "-O2", "-std=c11", filename, "-o", "main", "-lm"
            ],
            run_command=lambda filename, entry, limits: ["./main"],
            toolchain=("gcc",),
        ),
        LanguageSpec(
            id=Language.CPP,
            image=image_for(Language.CPP),
            filename="main.cpp",
            compile_command=lambda filename, limits: [
                "g++", "-O2", "-std=c++17", filename, "-o", "main"
            ],
            run_command=lambda filename, entry, limits: ["./main"],
            toolchain=("g++",),
        ),
        LanguageSpec(
            id=Language.JAVA,
            image=image_for(Language.JAVA),
            filename="Main.java",
            compile_command=lambda filename, limits: [
                "javac",
                *[f"-J{flag}" for flag in java_vm_flags(limits)],
                f"-J{_JAVA_ENTROPY_FLAG}",
                "-d", ".",
                filename,
            ],
            run_command=lambda filename, entry, limits: [
                "java", *java_vm_flags(limits), _JAVA_ENTROPY_FLAG, "-cp", ".", entry
            ],
            toolchain=("javac", "java"),
            entry_point_detector=detect_java_class,
        ),
        LanguageSpec(
            id=Language.CSHARP,
            image=image_for(Language.CSHARP),
            filename="Main.cs",
            compile_command=lambda filename, limits: ["mcs", "-optimize+", "-out:main.exe", filename],
            run_command=lambda filename, entry, limits: ["mono", "main.exe"],
            toolchain=("mcs", "mono"),
        ),
    ]


class LanguageRegistry:
    """Read-only lookup from language id to LanguageSpec"""

    def __init__(self, specs: Iterable[LanguageSpec]):
        self._specs: Mapping[Language, LanguageSpec] = MappingProxyType({spec.id: spec for spec in specs})

    @classmethod
    def from_settings(cls, settings: Settings) -> "LanguageRegistry":
        return cls(_default_specs(settings.LANGUAGE_IMAGES))

    def with_language(self, spec: LanguageSpec) -> "LanguageRegistry":
        """Return a new registry with ``spec`` added or replaced."""
        specs = dict(self._specs)
        specs[spec.id] = spec
        return LanguageRegistry(specs.values())

    def supported(self) -> List[str]:
        return [language.value for language in self._specs]

    def resolve(self, language_id: str) -> LanguageSpec:
        """
        Resolve a language id (or alias) to its spec.

        Raises:
            UnsupportedLanguageError: If the language is unknown or not registered.
        """
        try:
            language = parse_language(language_id)
        except ValueError:
            raise UnsupportedLanguageError(str(language_id), self.supported())

        spec = self._specs.get(language)
        if spec is None:
            raise UnsupportedLanguageError(str(language_id), self.supported())
        return spec
