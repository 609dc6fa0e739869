from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .catalog import Catalog
from .config import BPM_CONFIG_PATH, BPM_DATABASES_DIR, load_config
from .errors import BPMError
from .installed import InstalledPackages
from .lock import root_lock
from .operation import BPMOperation
from .package import InstallationReason, PackageInfo
from .plans import ReinstallMethod, plan_cleanup, plan_install, plan_remove, plan_update

log = logging.getLogger("bpm")


def _confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes", "s", "sim")


def _run_operation(op: BPMOperation, args: argparse.Namespace) -> None:
    print(op.format_summary())
    if not op.actions:
        return
    for pkg, deps in op.optional_dependencies().items():
        print(f"Dependências opcionais de {pkg}:")
        for d in deps:
            print(f"  {d}")
    if not args.yes and not _confirm("Continuar com a operação?"):
        log.info("Operação cancelada.")
        return
    op.execute(verbose=args.verbose, force=args.force)
    op.run_hooks(verbose=args.verbose)
    log.info("Operação concluída!")


def describe(info: PackageInfo, installed: Optional[InstalledPackages] = None) -> str:
    lines = [
        f"Nome: {info.name}",
        f"Descrição: {info.description}",
        f"Versão: {info.full_version}",
        f"Tipo: {info.type}",
        f"Arquitetura: {info.architecture}",
    ]
    if info.url:
        lines.append(f"URL: {info.url}")
    if info.license:
        lines.append(f"Licença: {info.license}")
    for label, values in (
        ("Mantenedores", info.maintainers),
        ("Dependências", info.depends),
        ("Dependências de build", info.make_depends),
        ("Dependências opcionais", info.optional_depends),
        ("Dependências de teste", info.check_depends),
        ("Conflitos", info.conflicts),
        ("Substitui", info.replaces),
        ("Provê", info.provides),
    ):
        if values:
            lines.append(f"{label}: {', '.join(values)}")
    if installed is not None and installed.is_installed(info.name):
        lines.append(f"Motivo da instalação: {installed.installation_reason(info.name).label}")
        dependants = installed.dependants(info.name)
        if dependants:
            lines.append(f"Pacotes dependentes: {', '.join(dependants)}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bpm", description="Gerenciador de pacotes binários bpm")
    parser.add_argument("-R", "--root", default="/", help="Raiz alvo da operação (padrão: /)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Mais logs")
    parser.add_argument("-y", "--yes", action="store_true", help="Não pedir confirmação")
    parser.add_argument("-f", "--force", action="store_true", help="Ignora dependências ausentes, conflitos e arquitetura")
    parser.add_argument("--config", default=str(BPM_CONFIG_PATH), help="Arquivo de configuração")
    parser.add_argument("--databases-dir", default=str(BPM_DATABASES_DIR), help="Diretório das bases sincronizadas")

    sub = parser.add_subparsers(dest="cmd", required=True)

    p_i = sub.add_parser("install", help="Instala pacotes (arquivos .bpm ou nomes do catálogo)")
    p_i.add_argument("packages", nargs="+")
    p_i.add_argument("--reinstall", action="store_true", help="Reinstala os pacotes indicados mesmo na mesma versão")
    p_i.add_argument("--reinstall-all", action="store_true", help="Reinstala também as dependências")
    p_i.add_argument("--reason", choices=["manual", "dependency"], default=None, help="Força o motivo da instalação")
    p_i.add_argument("--optional", action="store_true", help="Instala também dependências opcionais")

    p_r = sub.add_parser("remove", help="Remove pacotes instalados")
    p_r.add_argument("packages", nargs="+")
    p_r.add_argument("--unused", action="store_true", help="Remove só os que ninguém mais usa")
    p_r.add_argument("--cleanup", action="store_true", help="Remove também dependências órfãs")

    p_c = sub.add_parser("cleanup", help="Remove dependências órfãs")
    p_c.add_argument("--keep-make-depends", action="store_true", help="Mantém dependências de build")

    p_u = sub.add_parser("update", help="Atualiza os pacotes instalados a partir das bases")
    p_u.add_argument("--sync", action="store_true", help="Sincroniza as bases antes")
    p_u.add_argument("--allow-downgrades", action="store_true", help="Aceita versões mais antigas do catálogo")
    p_u.add_argument("--optional", action="store_true", help="Instala também dependências opcionais novas")

    sub.add_parser("sync", help="Sincroniza as bases configuradas")

    p_l = sub.add_parser("list", help="Lista pacotes instalados")
    p_l.add_argument("-n", "--names", action="store_true", help="Só os nomes")

    p_info = sub.add_parser("info", help="Mostra informações de um pacote")
    p_info.add_argument("package")
    p_info.add_argument("--catalog", action="store_true", help="Consulta o catálogo em vez dos instalados")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    root = Path(args.root)
    databases_dir = Path(args.databases_dir)

    try:
        config = load_config(Path(args.config))

        if args.cmd == "list":
            installed = InstalledPackages(root)
            for pkg in installed.packages():
                if args.names:
                    print(pkg.name)
                else:
                    reason = installed.installation_reason(pkg.name).label
                    print(f"{pkg.name} {pkg.info.full_version} ({reason})")
            return

        if args.cmd == "info":
            if args.catalog:
                catalog = Catalog.load(config, databases_dir)
                entry = catalog.lookup(args.package)
                if entry is None:
                    raise SystemExit(f"Pacote não encontrado: {args.package}")
                print(describe(entry.info))
                dependants = catalog.dependants(entry.name)
                if dependants:
                    print(f"Dependentes no catálogo: {', '.join(dependants)}")
                print(f"Base: {entry.database_name}")
                return
            installed = InstalledPackages(root)
            real = args.package if installed.is_installed(args.package) else installed.virtual_provider(args.package)
            info = installed.info(real) if real else None
            if info is None:
                raise SystemExit(f"Pacote não instalado: {args.package}")
            print(describe(info, installed))
            return

        with root_lock(root):
            if args.cmd == "sync":
                Catalog.sync(config, databases_dir)
                log.info("Bases sincronizadas.")
                return

            catalog = Catalog.load(config, databases_dir)
            if args.cmd == "install":
                if args.reinstall_all:
                    reinstall = ReinstallMethod.ALL
                elif args.reinstall:
                    reinstall = ReinstallMethod.SPECIFIED
                else:
                    reinstall = ReinstallMethod.NONE
                reason = InstallationReason(args.reason) if args.reason else None
                op = plan_install(
                    root, catalog, args.packages,
                    reason=reason, reinstall=reinstall, include_optional=args.optional,
                    force=args.force, config=config, verbose=args.verbose,
                )
            elif args.cmd == "remove":
                op = plan_remove(
                    root, catalog, args.packages,
                    unused_only=args.unused, cleanup=args.cleanup, force=args.force, config=config,
                )
            elif args.cmd == "cleanup":
                cleanup_make = config.cleanup_make_dependencies and not args.keep_make_depends
                op = plan_cleanup(root, catalog, cleanup_make_depends=cleanup_make, config=config)
            elif args.cmd == "update":
                op = plan_update(
                    root, catalog,
                    sync_first=args.sync, include_optional=args.optional, force=args.force,
                    allow_downgrades=args.allow_downgrades, databases_dir=databases_dir,
                    config=config, verbose=args.verbose,
                )
            else:
                parser.error("Comando desconhecido")
                return
            _run_operation(op, args)
    except (BPMError, OSError) as e:
        raise SystemExit(f"Erro: {e}")


if __name__ == "__main__":
    main(sys.argv[1:])
