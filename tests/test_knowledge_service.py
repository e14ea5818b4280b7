from datetime import datetime, timezone

from atende.models import KnowledgeDocument, Tenant
from atende.services.knowledge_service import load_knowledge_base


def _document(tenant_id, content_text, status="ready", minute=0):
    return KnowledgeDocument(
        tenant_id=tenant_id,
        file_name="documento.pdf",
        content_text=content_text,
        status=status,
        created_at=datetime(2026, 10, 1, 9, minute, tzinfo=timezone.utc),
    )


class TestLoadKnowledgeBase:
    def test_joins_ready_documents(self, db_session, tenant):
        db_session.add_all(
            [
                _document(tenant.id, "Atendemos convênios.", minute=0),
                _document(tenant.id, None, minute=1),
                _document(tenant.id, "Ainda processando.", status="processing", minute=2),
                _document(tenant.id, "Estacionamento gratuito.", minute=3),
            ]
        )
        db_session.commit()

        assert load_knowledge_base(db_session, tenant.id) == "Atendemos convênios.\n\n---\n\nEstacionamento gratuito."

    def test_other_tenants_are_excluded(self, db_session, tenant):
        other = Tenant(name="Outra Clínica", instance_name="outra")
        db_session.add(other)
        db_session.flush()
        db_session.add(_document(other.id, "Segredo da outra clínica."))
        db_session.commit()

        assert load_knowledge_base(db_session, tenant.id) == ""

    def test_truncates(self, db_session, tenant):
        db_session.add(_document(tenant.id, "x" * 50))
        db_session.commit()

        assert load_knowledge_base(db_session, tenant.id, max_chars=20) == "x" * 20
