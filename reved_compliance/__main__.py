"""Point d'entrée du module reved_compliance. Permet python -m reved_compliance."""

import argparse
import json
import sys
from datetime import timedelta
from typing import Any

DEFAULT_METRICS_PORT = 9108


def _print_json(data: Any) -> None:
    """Affiche un résultat en JSON lisible."""
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _runtime(inline: bool = True) -> Any:
    """Construit le runtime (scheduler inline pour les commandes ponctuelles)."""
    from reved_compliance.runtime import build_runtime
    from reved_compliance.services.scheduling import InlineScheduler

    return build_runtime(scheduler=InlineScheduler() if inline else None)


def run_init_db() -> None:
    """Crée les tables et les politiques de rétention par défaut."""
    runtime = _runtime()
    created = runtime.init_schema()
    print(f"✅ Schéma initialisé ({created} politiques par défaut créées)")


def run_serve(metrics_port: int, concurrency: int) -> None:
    """Lance un worker Celery avec beat embarqué jusqu'à interruption."""
    from prometheus_client import start_http_server

    from reved_compliance.settings import settings

    runtime = _runtime(inline=False)
    start_http_server(metrics_port)
    print(f"📈 Métriques Prometheus sur :{metrics_port}")

    runtime.start()
    print("🛡️  Compliance core démarré (Ctrl+C pour arrêter)")
    try:
        runtime.scheduler.app.worker_main(
            [
                "worker",
                "--beat",
                "--loglevel=INFO",
                f"--concurrency={concurrency}",
                f"--queues={settings.scheduler.queue_name}",
            ]
        )
    finally:
        runtime.shutdown()
        print("👋 Arrêté")


def run_retention() -> None:
    """Exécute toutes les politiques de rétention actives."""
    runtime = _runtime()
    runtime.init_schema()
    summary = runtime.retention.execute_retention_policies()
    _print_json(summary.to_dict())


def run_retention_report(days: int) -> None:
    """Rapport de rétention sur les N derniers jours."""
    runtime = _runtime()
    now = runtime.clock()
    report = runtime.retention.generate_retention_report(now - timedelta(days=days), now)
    _print_json(report.to_dict())


def run_inactivity_check() -> None:
    """Vérifie les comptes inactifs (avertissement ou anonymisation)."""
    runtime = _runtime()
    result = runtime.anonymization.check_inactive_accounts()
    _print_json(result.to_dict())


def run_audit_verify(audit_id: str | None, verify_all: bool) -> None:
    """Vérifie l'intégrité d'une entrée ou de tout le journal."""
    runtime = _runtime()

    if verify_all:
        tampered = runtime.audit.verify_all()
        if tampered:
            print(f"❌ {len(tampered)} entrées altérées :")
            for entry_id in tampered:
                print(f"  - {entry_id}")
            sys.exit(2)
        print("✅ Journal d'audit intègre")
        return

    report = runtime.audit.verify_audit_integrity(audit_id)
    if report.tampering:
        print(f"❌ Entrée altérée : {audit_id}")
        sys.exit(2)
    print(f"✅ Entrée intègre : {audit_id}")


def run_audit_report(days: int, export_format: str | None) -> None:
    """Rapport de conformité sur les N derniers jours."""
    runtime = _runtime()
    now = runtime.clock()
    report = runtime.reporter.generate_compliance_report(
        now - timedelta(days=days),
        now,
        export_format=export_format,
        generated_by="cli",
    )
    _print_json(report.to_dict())
    if report.export_path:
        print(f"📂 Export : {report.export_path}")


def show_job_statistics() -> None:
    """Statistiques des jobs d'anonymisation."""
    runtime = _runtime()
    stats = runtime.anonymization.get_job_statistics()

    print("\n🔒 Jobs d'anonymisation :")
    for status, count in stats.items():
        print(f"  - {status}: {count}")


def show_job_report(job_id: str) -> None:
    """Rapport d'anonymisation d'un job."""
    runtime = _runtime()
    _print_json(runtime.anonymization.generate_anonymization_report(job_id).to_dict())


def main() -> None:
    """CLI principal."""
    parser = argparse.ArgumentParser(
        description="RevEd Kids - Compliance core (audit, anonymisation, rétention, consentement)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exemples:
  python -m reved_compliance init-db                      # Tables + politiques
  python -m reved_compliance serve                        # Worker Celery + métriques
  python -m reved_compliance retention-run                # Exécuter les politiques
  python -m reved_compliance retention-report --days 7    # Rapport de rétention
  python -m reved_compliance inactivity-check             # Comptes inactifs
  python -m reved_compliance audit-verify --all           # Intégrité du journal
  python -m reved_compliance audit-report --format csv    # Rapport de conformité
  python -m reved_compliance jobs                         # Statistiques des jobs
  python -m reved_compliance job-report <job_id>           # Rapport d'un job
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commande")

    # Schéma
    subparsers.add_parser("init-db", help="Créer les tables")

    # Service
    serve_parser = subparsers.add_parser("serve", help="Worker Celery + beat")
    serve_parser.add_argument("--metrics-port", type=int, default=DEFAULT_METRICS_PORT)
    serve_parser.add_argument("--concurrency", type=int, default=2)

    # Rétention
    subparsers.add_parser("retention-run", help="Exécuter les politiques de rétention")
    retention_report_parser = subparsers.add_parser("retention-report", help="Rapport de rétention")
    retention_report_parser.add_argument("--days", type=int, default=7)

    # Anonymisation
    subparsers.add_parser("inactivity-check", help="Vérifier les comptes inactifs")
    subparsers.add_parser("jobs", help="Statistiques des jobs")
    job_report_parser = subparsers.add_parser("job-report", help="Rapport d'anonymisation d'un job")
    job_report_parser.add_argument("job_id")

    # Audit
    verify_parser = subparsers.add_parser("audit-verify", help="Vérifier l'intégrité du journal")
    verify_group = verify_parser.add_mutually_exclusive_group(required=True)
    verify_group.add_argument("audit_id", nargs="?")
    verify_group.add_argument("--all", action="store_true", dest="verify_all")

    audit_report_parser = subparsers.add_parser("audit-report", help="Rapport de conformité")
    audit_report_parser.add_argument("--days", type=int, default=30)
    audit_report_parser.add_argument("--format", choices=["json", "csv"], dest="export_format")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "init-db":
            run_init_db()
        elif args.command == "serve":
            run_serve(args.metrics_port, args.concurrency)
        elif args.command == "retention-run":
            run_retention()
        elif args.command == "retention-report":
            run_retention_report(args.days)
        elif args.command == "inactivity-check":
            run_inactivity_check()
        elif args.command == "audit-verify":
            run_audit_verify(args.audit_id, args.verify_all)
        elif args.command == "audit-report":
            run_audit_report(args.days, args.export_format)
        elif args.command == "jobs":
            show_job_statistics()
        elif args.command == "job-report":
            show_job_report(args.job_id)

    except KeyboardInterrupt:
        print("\n⚠️  Interrompu")
        sys.exit(130)
    except Exception as e:
        print(f"\n❌ ERREUR : {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
