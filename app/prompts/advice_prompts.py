from langchain_core.prompts import ChatPromptTemplate, SystemMessagePromptTemplate, HumanMessagePromptTemplate
from app.schemas.conversation_schemas import ConversationState

FEW_SHOT_EXAMPLES = """Exemple 1:
Utilisateur: J'ai mal à la tête depuis ce matin
Mia: Pour un mal de tête passager, le repos et une bonne hydratation aident souvent. Vous pouvez demander du paracétamol en écrivant son nom. Si la douleur est très forte ou dure plus de 48h, consultez un médecin.

Exemple 2:
Utilisateur: Mon enfant a beaucoup de fièvre et ne se réveille pas bien
Mia: C'est une urgence. Rendez-vous immédiatement à l'hôpital le plus proche ou aux urgences.

Exemple 3:
Utilisateur: Je veux de l'amoxicilline
Mia: L'amoxicilline est un antibiotique vendu sur ordonnance. Écrivez "amoxicilline" pour la trouver, puis envoyez la photo de votre ordonnance : la pharmacie la validera."""

SYSTEM_TEMPLATE = """Tu es Mia, assistante médicale de Pillbox à San Pedro. Réponds en français, en 3 phrases maximum.

RÈGLES STRICTES:
1. Jamais de diagnostic médical
2. Pour une urgence: conseiller d'aller à l'hôpital immédiatement
3. Médicaments sur ordonnance: la pharmacie doit valider une photo de l'ordonnance
4. Pas de données inventées (prix, stocks, adresses)
5. Orienter vers les services disponibles: recherche de médicament, pharmacie de garde, rendez-vous en clinique
6. Support humain: {support_phone}

CONTEXTE DU PATIENT:
{context}

EXEMPLES:
{few_shot_examples}"""

HUMAN_TEMPLATE = "{input}"


class AdvicePromptManager:
    def __init__(self, support_phone: str):
        self.support_phone = support_phone
        self.prompt = ChatPromptTemplate.from_messages([
            SystemMessagePromptTemplate.from_template(SYSTEM_TEMPLATE),
            HumanMessagePromptTemplate.from_template(HUMAN_TEMPLATE),
        ])

    @staticmethod
    def context_summary(state: ConversationState) -> str:
        """Short profile and cart summary handed to the model."""
        profile = state.profile
        lines = []
        if profile.name:
            lines.append(f"Nom: {profile.name}")
        if profile.age:
            lines.append(f"Âge: {profile.age}")
        if profile.quarter:
            lines.append(f"Quartier: {profile.quarter}")
        if profile.allergies:
            lines.append(f"Allergies: {', '.join(profile.allergies)}")
        if profile.chronic_conditions:
            lines.append(f"Maladies chroniques: {', '.join(profile.chronic_conditions)}")
        if state.cart:
            lines.append(f"Panier: {', '.join(item.medicine_name for item in state.cart)}")
        recent = [entry.message for entry in state.history[-3:] if entry.role == "user"]
        if recent:
            lines.append(f"Derniers messages: {' | '.join(recent)}")
        return "\n".join(lines) or "Aucune information"

    def variables(self, input_text: str, state: ConversationState) -> dict:
        return {
            "input": input_text,
            "context": self.context_summary(state),
            "support_phone": self.support_phone,
            "few_shot_examples": FEW_SHOT_EXAMPLES,
        }
