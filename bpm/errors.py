"""
Exceções do bpm.

Erros de planejamento (pacote ausente, conflito, dependentes) são levantados
antes de qualquer alteração no filesystem. Erros durante a execução chegam
embrulhados em OperationError, com o nome do pacote cuja ação falhou.
"""
from __future__ import annotations

from typing import Dict, Iterable, List


class BPMError(Exception):
    pass


class FormatError(BPMError, ValueError):
    """Arquivo, manifesto ou metadados malformados. Nunca pode ser forçado."""


class PackageNotFoundError(BPMError):
    def __init__(self, packages: Iterable[str]):
        self.packages: List[str] = list(packages)
        super().__init__("Pacotes não encontrados em nenhuma base: " + ", ".join(self.packages))


class DependencyNotFoundError(BPMError):
    def __init__(self, dependencies: Iterable[str]):
        self.dependencies: List[str] = list(dependencies)
        super().__init__("Dependências não encontradas em nenhuma base: " + ", ".join(self.dependencies))


class PackageConflictError(BPMError):
    def __init__(self, conflicts: Dict[str, List[str]]):
        self.conflicts = dict(conflicts)
        lines = ["Conflitos detectados:"]
        for pkg, others in self.conflicts.items():
            lines.append(f"  {pkg} conflita com: {', '.join(others)}")
        super().__init__("\n".join(lines))


class PackageRemovalDependencyError(BPMError):
    def __init__(self, required: Dict[str, List[str]]):
        self.required = dict(required)
        lines = ["Remover estes pacotes quebraria outros pacotes instalados:"]
        for pkg, dependants in self.required.items():
            lines.append(f"  {pkg} é requerido por: {', '.join(dependants)}")
        super().__init__("\n".join(lines))


class PackageNotInstalledError(BPMError):
    def __init__(self, package: str):
        self.package = package
        super().__init__(f"Pacote não instalado: {package}")


class ArchitectureError(BPMError):
    def __init__(self, package: str, architecture: str, host: str):
        self.package = package
        self.architecture = architecture
        self.host = host
        super().__init__(f"{package} é para {architecture}, mas o host é {host} (use --force)")


class LockHeldError(BPMError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Outra operação do bpm já está em andamento (lock: {path})")


class PackageScriptError(BPMError):
    def __init__(self, package: str, script: str, returncode: int):
        self.package = package
        self.script = script
        self.returncode = returncode
        super().__init__(f"Script {script} de {package} falhou (exit={returncode})")


class TransportError(BPMError):
    """Descritor de base ou arquivo de pacote não pôde ser obtido."""


class DuplicateActionError(BPMError, ValueError):
    def __init__(self, package: str):
        self.package = package
        super().__init__(f"Já existe uma ação planejada para {package}")


class OperationError(BPMError):
    def __init__(self, package: str, cause: BaseException):
        self.package = package
        self.cause = cause
        super().__init__(f"Falha ao processar {package}: {cause}")
