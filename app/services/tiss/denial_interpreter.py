"""
TISS Denial Interpreter
Interprets and categorizes glosa reason codes from operators
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from app.schemas.tiss import MotivoGlosa

logger = logging.getLogger(__name__)


class DenialInterpreter:
    """Interpreter for ANS glosa reason codes"""

    DENIAL_CODES = {
        # Administrative
        MotivoGlosa.A1: {
            'category': 'administrativa',
            'description': 'Guia não preenchida corretamente',
            'recommendation': 'Revise o preenchimento da guia e reenvie com os dados corretos',
            'action': 'fix_data',
        },
        MotivoGlosa.A2: {
            'category': 'cobertura',
            'description': 'Procedimento não coberto pelo plano',
            'recommendation': 'Verifique a cobertura do plano ou solicite autorização especial',
            'action': 'review_coverage',
        },
        MotivoGlosa.A3: {
            'category': 'tecnica',
            'description': 'Procedimento já realizado no período',
            'recommendation': 'Apresente justificativa médica para repetição do procedimento',
            'action': 'justify',
        },
        MotivoGlosa.A4: {
            'category': 'cobertura',
            'description': 'Beneficiário sem cobertura ativa',
            'recommendation': 'Confirme a situação do beneficiário com a operadora',
            'action': 'verify_coverage',
        },
        MotivoGlosa.A5: {
            'category': 'cobertura',
            'description': 'Carência não cumprida',
            'recommendation': 'Aguarde o período de carência ou solicite exceção',
            'action': 'verify_coverage',
        },
        MotivoGlosa.A6: {
            'category': 'administrativa',
            'description': 'Cobrança em duplicidade',
            'recommendation': 'Identifique e cancele a cobrança duplicada',
            'action': 'cancel_duplicate',
        },
        MotivoGlosa.A7: {
            'category': 'valor',
            'description': 'Valor acima do contratado',
            'recommendation': 'Verifique a tabela de preços contratada',
            'action': 'adjust_value',
        },
        MotivoGlosa.A8: {
            'category': 'autorizacao',
            'description': 'Ausência de autorização prévia',
            'recommendation': 'Solicite autorização retroativa com justificativa de urgência',
            'action': 'request_authorization',
        },
        MotivoGlosa.A9: {
            'category': 'documentacao',
            'description': 'Documentação incompleta',
            'recommendation': 'Anexe a documentação faltante ao recurso',
            'action': 'provide_documentation',
        },
        MotivoGlosa.A10: {
            'category': 'administrativa',
            'description': 'Prazo de envio excedido',
            'recommendation': 'Solicite exceção de prazo com justificativa',
            'action': 'justify',
        },
        # Clinical
        MotivoGlosa.B1: {
            'category': 'tecnica',
            'description': 'CID incompatível com procedimento',
            'recommendation': 'Revise a indicação clínica e o CID informado',
            'action': 'verify_diagnosis',
        },
        MotivoGlosa.B2: {
            'category': 'tecnica',
            'description': 'Quantidade acima do permitido',
            'recommendation': 'Justifique a necessidade da quantidade realizada',
            'action': 'justify',
        },
        # Registration
        MotivoGlosa.C1: {
            'category': 'cadastral',
            'description': 'Profissional não cadastrado na operadora',
            'recommendation': 'Regularize o cadastro do profissional na operadora',
            'action': 'update_registration',
        },
        MotivoGlosa.OUTROS: {
            'category': 'outros',
            'description': 'Outro motivo',
            'recommendation': 'Entre em contato com a operadora para esclarecimentos',
            'action': 'contact_operator',
        },
    }

    # Codes that are usually fixed and resubmitted instead of appealed
    RESUBMIT_CODES = {MotivoGlosa.A1, MotivoGlosa.A6}

    def describe(self, codigo: str) -> str:
        info = self._lookup(codigo)
        return info['description'] if info else 'Motivo não catalogado'

    def _lookup(self, codigo: str) -> Optional[Dict]:
        try:
            return self.DENIAL_CODES.get(MotivoGlosa(codigo))
        except ValueError:
            return None

    def interpret_denial(self, codigo: str, mensagem: Optional[str] = None) -> Dict:
        """
        Interpret a glosa code and provide actionable information

        Args:
            codigo: Glosa reason code from the operator (A1..A10, B1, B2, C1, outros)
            mensagem: Optional operator message

        Returns:
            Dictionary with category, description, recommendation and action
        """
        info = self._lookup(codigo)
        if info is None:
            logger.warning(f"Unknown glosa code {codigo}")
            return {
                'codigo': codigo,
                'category': 'desconhecida',
                'description': mensagem or 'Motivo não catalogado',
                'recommendation': 'Entre em contato com a operadora',
                'action': 'contact_operator',
                'message': mensagem or f'Código de glosa desconhecido: {codigo}',
                'can_resubmit': False,
                'can_appeal': True,
            }

        motivo = MotivoGlosa(codigo)
        return {
            'codigo': motivo.value,
            'category': info['category'],
            'description': info['description'],
            'recommendation': info['recommendation'],
            'action': info['action'],
            'message': mensagem or info['description'],
            'can_resubmit': motivo in self.RESUBMIT_CODES,
            'can_appeal': motivo not in self.RESUBMIT_CODES,
        }

    def interpret_multiple_denials(self, denials: List[Dict]) -> Dict:
        """
        Interpret a list of glosa items and summarize them

        Args:
            denials: Dictionaries with 'codigo_glosa' and optional 'descricao_glosa'
        """
        interpreted = []
        categories: Dict[str, int] = {}
        actions_needed = set()

        for denial in denials:
            interpretation = self.interpret_denial(denial.get('codigo_glosa'), denial.get('descricao_glosa'))
            interpreted.append(interpretation)
            categories[interpretation['category']] = categories.get(interpretation['category'], 0) + 1
            actions_needed.add(interpretation['action'])

        return {
            'denials': interpreted,
            'summary': {
                'total_denials': len(denials),
                'categories': categories,
                'actions_needed': sorted(actions_needed),
                'can_appeal_any': any(d['can_appeal'] for d in interpreted),
                'can_resubmit_all': bool(interpreted) and all(d['can_resubmit'] for d in interpreted),
            },
        }

    @staticmethod
    def days_to_appeal_deadline(prazo_recurso: date, data_referencia: Optional[date] = None) -> int:
        """Days left to appeal, negative once the deadline has passed"""
        return (prazo_recurso - (data_referencia or date.today())).days

    @classmethod
    def is_within_appeal_deadline(cls, prazo_recurso: date, data_referencia: Optional[date] = None) -> bool:
        return cls.days_to_appeal_deadline(prazo_recurso, data_referencia) >= 0
