"""
Chat message templates (Portuguese, as sent to Mozambican groups).
"""

from datetime import datetime
from typing import List

from megaledger.config import settings
from megaledger.models.ledger import (
    GroupSummary,
    InactiveBuyer,
    PurchaseResult,
    RankingEntry,
    ZeroPurchaseMember,
)
from megaledger.utils.megas import format_megabytes

MEDALS = {1: '🥇', 2: '🥈', 3: '🥉'}


def ordinal(number: int) -> str:
    """Feminine Portuguese ordinal ("compra" is feminine)."""
    return f"{number}ª"


class MessageComposer:
    """Renders purchase replies, command answers and notifications."""

    def __init__(self, welcome_back_days: int = None):
        self.welcome_back_days = (
            welcome_back_days if welcome_back_days is not None
            else settings.WELCOME_BACK_DAYS
        )

    # Purchases

    def purchase_message(self, result: PurchaseResult) -> str:
        """
        Personalized thank-you for a confirmed purchase.

        Branches:
        - days since previous purchase >= welcome_back_days → "welcome back"
        - otherwise → "Nª compra do dia"
        Followed by a rank suffix and, for non-leaders, the leader's total.
        """
        mention = result.phone.lstrip('+')
        added = format_megabytes(result.amount)
        total = format_megabytes(result.cumulative_total)

        if result.days_since_last_purchase >= self.welcome_back_days:
            base = (
                f"🎉 Obrigado, @{mention}, Há {result.days_since_last_purchase} dias que você não comprava, "
                f"bom tê-lo de volta! Foram adicionados {added}, totalizando {total} comprados."
            )
        else:
            base = (
                f"🎉 Obrigado, @{mention}, Você está fazendo a sua {ordinal(result.purchases_today)} compra do dia! "
                f"Foram adicionados {added}, totalizando {total} comprados."
            )

        return base + self.rank_suffix(result)

    def rank_suffix(self, result: PurchaseResult) -> str:
        if result.rank == 1:
            return (
                " Você está em 1º lugar no ranking. Continue comprando para se manter no topo "
                "e garantir seus bônus de líder!"
            )

        if result.rank == 2:
            motivation = " Você está em 2º lugar no ranking. Está quase lá! Continue comprando para alcançar o topo."
        else:
            motivation = (
                f" Você está em {result.rank}º lugar no ranking. Continue comprando para subir "
                "e desbloquear bônus especiais."
            )

        leader = ""
        if result.leader_phone:
            leader = f" O líder já acumulou {format_megabytes(result.leader_total)}! 🏆"
        return motivation + leader

    # Commands

    def ranking_message(self, entries: List[RankingEntry], summary: GroupSummary) -> str:
        if not entries:
            return '📊 *RANKING*\n\nAinda não há compradores registados neste grupo.'

        lines = ['🏆 *RANKING DE COMPRADORES* 🏆\n']
        for entry in entries:
            medal = MEDALS.get(entry.position, '📍')
            name = entry.display_name or entry.phone.replace(f"+{settings.COUNTRY_CODE}", '')
            lines.append(f"{medal} *{entry.position}º* - {name}")
            lines.append(f"   📊 {format_megabytes(entry.cumulative_purchase_amount)}\n")

        lines.append(f"📈 *Total do grupo:* {format_megabytes(summary.total_amount)}")
        lines.append(f"🛒 *Total de compras:* {summary.total_purchase_count}")
        return '\n'.join(lines)

    def inactive_message(self, inactive: List[InactiveBuyer], limit: int = None, threshold_days: int = None) -> str:
        limit = limit or settings.INACTIVE_LIST_LIMIT
        threshold_days = threshold_days or settings.INACTIVE_DAYS

        if not inactive:
            return (
                f"😴 *COMPRADORES INATIVOS*\n\nNão há compradores inativos "
                f"({threshold_days}+ dias sem comprar)."
            )

        lines = ['😴 *COMPRADORES INATIVOS* 😴', f"*(Mais de {threshold_days} dias sem comprar)*\n"]
        for buyer in inactive[:limit]:
            lines.append(f"📱 {buyer.display_name}")
            lines.append(f"   ⏰ {buyer.days_inactive} dias sem comprar")
            lines.append(f"   📊 Total: {format_megabytes(buyer.cumulative_purchase_amount)}\n")

        if len(inactive) > limit:
            lines.append(f"... e mais {len(inactive) - limit} compradores inativos.")
        return '\n'.join(lines)

    def zero_purchase_message(self, members: List[ZeroPurchaseMember], member_total: int, limit: int = None) -> str:
        limit = limit or settings.ZERO_PURCHASE_LIST_LIMIT

        if not members:
            return (
                '📝 *SEM REGISTO DE COMPRAS*\n\nTodos os membros do grupo já fizeram '
                'pelo menos uma compra! 🎉'
            )

        lines = ['📝 *MEMBROS SEM COMPRAS* 📝', '*(Membros do grupo que nunca compraram)*\n']
        for member in members[:limit]:
            status = '📋 Registado' if member.has_record else '❌ Sem registo'
            lines.append(f"📱 {member.display_name}")
            lines.append(f"   {status} • 0 MB comprados\n")

        if len(members) > limit:
            lines.append(f"... e mais {len(members) - limit} membros sem compras.")

        lines.append(f"\n💡 *Total sem compras:* {len(members)}/{member_total} membros")
        return '\n'.join(lines)

    def group_only(self) -> str:
        return '📝 Este comando só funciona em grupos.'

    def access_denied(self, action: str) -> str:
        return f"🚫 *ACESSO NEGADO*\n\nApenas administradores podem executar {action}."

    def bot_not_admin(self) -> str:
        return '🚫 *BOT SEM PERMISSÃO*\n\nO bot precisa ser administrador para remover membros.'

    def membership_error(self) -> str:
        return '❌ Erro ao obter lista de membros do grupo. Certifique-se de que o bot é administrador.'

    # Cleanup workflow

    def cleanup_unnecessary(self, foreign_numbers: bool = False) -> str:
        if foreign_numbers:
            return (
                '✅ *LIMPEZA DESNECESSÁRIA*\n\nTodos os membros (não-admin) são números '
                'moçambicanos válidos! 🇲🇿'
            )
        return '✅ *LIMPEZA DESNECESSÁRIA*\n\nTodos os membros (não-admin) já têm compras registadas!'

    def cleanup_confirmation(self, names: List[str], foreign_numbers: bool = False) -> str:
        preview = '\n'.join(f"• {name}" for name in names[:10])
        if len(names) > 10:
            preview += f"\n... e mais {len(names) - 10}"

        if foreign_numbers:
            return (
                '🇲🇿 *CONFIRMAÇÃO DE LIMPEZA NÚMEROS* 🇲🇿\n\n'
                f"⚠️ Será removido {len(names)} número(s) estrangeiro(s):\n\n{preview}"
                '\n\n📋 *PROTEGIDOS:* Administradores não serão removidos\n'
                f"🇲🇿 *CRITÉRIO:* Apenas números +{settings.COUNTRY_CODE} são aceites\n\n"
                f"Para confirmar, responda com: *{settings.COMMAND_PREFIX}confirmar.numeros*\n"
                'Para cancelar, ignore esta mensagem.'
            )
        return (
            '🧹 *CONFIRMAÇÃO DE LIMPEZA* 🧹\n\n'
            f"⚠️ Será removido {len(names)} membro(s) sem compras:\n\n{preview}"
            '\n\n📋 *PROTEGIDOS:* Administradores não serão removidos\n\n'
            f"Para confirmar, responda com: *{settings.COMMAND_PREFIX}confirmar*\n"
            'Para cancelar, ignore esta mensagem.'
        )

    def no_pending_cleanup(self, foreign_numbers: bool = False) -> str:
        if foreign_numbers:
            return '❌ Não há limpeza de números pendente para confirmar.'
        return '❌ Não há limpeza pendente para confirmar.'

    def cleanup_wrong_requester(self) -> str:
        return '🚫 Apenas quem solicitou a limpeza pode confirmar.'

    def cleanup_started(self, count: int, foreign_numbers: bool = False) -> str:
        if foreign_numbers:
            return (
                f"🇲🇿 *INICIANDO LIMPEZA DE NÚMEROS...*\n\nRemoção de {count} número(s) "
                "estrangeiro(s) em andamento..."
            )
        return f"🧹 *INICIANDO LIMPEZA...*\n\nRemoção de {count} membro(s) em andamento..."

    def cleanup_report(self, removed: int, errors: int, total: int, foreign_numbers: bool = False) -> str:
        if foreign_numbers:
            return (
                '✅ *LIMPEZA DE NÚMEROS CONCLUÍDA* ✅\n\n'
                f"🗑️ **Removidos:** {removed} número(s) estrangeiro(s)\n"
                f"❌ **Erros:** {errors}\n"
                f"📊 **Total processado:** {total}\n\n"
                '🇲🇿 Grupo agora contém apenas números moçambicanos válidos!'
            )
        return (
            '✅ *LIMPEZA CONCLUÍDA* ✅\n\n'
            f"🗑️ **Removidos:** {removed} membro(s)\n"
            f"❌ **Erros:** {errors}\n"
            f"📊 **Total processado:** {total}\n\n"
            '🎯 Grupo agora contém apenas membros com compras registadas!'
        )

    def foreign_number_removed(self, name: str, phone: str, reason: str) -> str:
        return (
            '🚫 *NÚMERO ESTRANGEIRO REMOVIDO* 🚫\n\n'
            f"👤 **Usuário:** {name}\n"
            f"📱 **Número:** +{phone}\n"
            '🌍 **Motivo:** Número não moçambicano\n'
            f"⚡ **Ação:** {reason}\n\n"
            f"🇲🇿 *Este grupo aceita apenas números de Moçambique (+{settings.COUNTRY_CODE})*"
        )

    # Spam lockdown

    def spam_detected(self, name: str, phone: str, count: int, at: datetime) -> str:
        return (
            '🚨 *SPAM DETECTADO* 🚨\n\n'
            f"👤 **Usuário:** {name}\n"
            f"📱 **Número:** +{phone}\n"
            f"📊 **Mensagens repetidas:** {count}\n"
            f"⏰ **Horário:** {at.strftime('%d/%m/%Y %H:%M:%S')}\n\n"
            '🔒 **GRUPO SERÁ FECHADO POR SEGURANÇA**\n\n'
            '*Motivo:* Suspeita de spam/flood de mensagens'
        )

    def group_closed(self) -> str:
        return (
            '🔐 *GRUPO FECHADO AUTOMATICAMENTE* 🔐\n\n'
            'O grupo foi temporariamente fechado devido à detecção de spam.\n\n'
            '👨‍💼 **Administradores:** O grupo está agora restrito apenas para admins.\n'
            'Para reabrir, use as configurações do grupo.\n\n'
            '⚠️ **Recomendação:** Revisar e remover o usuário suspeito antes de reabrir.'
        )
